# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
DynamoDB lease store.

Wraps a boto3 low-level DynamoDB client. The client is blocking, so each call
runs in the loop's default executor (or the one supplied). Cancelling the
awaiting task does not stop a request already sent: the write may still land.

Item schema (attribute names come from LockConfig):
    <key_attribute>         S   partition key
    <holder_attribute>      S
    <expiration_attribute>  N
"""

import asyncio
import functools
from collections.abc import Callable, Mapping
from concurrent.futures import Executor
from typing import Any

import boto3
from botocore.exceptions import ClientError

from ..core.log import get_logger
from ..core.types import Item, TableName
from .base import WriteOutcome
from .conditions import AttributeBefore, AttributeEquals, AttributeNotExists, Condition

__all__ = [
    "CONDITIONAL_CHECK_FAILED",
    "DynamoLeaseStore",
    "is_condition_failure",
    "render_condition",
]

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

_log = get_logger("storage.dynamodb")


# ---- Attribute value codec ---------------------------------------------------


def _to_attr(value: Any) -> dict[str, str]:
    if isinstance(value, bool):
        raise TypeError("boolean lease attributes are not supported")
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, int):
        return {"N": str(value)}
    raise TypeError(f"unsupported lease attribute type: {type(value).__name__}")


def _from_attr(value: Mapping[str, Any]) -> Any:
    if "S" in value:
        return value["S"]
    if "N" in value:
        return int(value["N"])
    raise TypeError(f"unsupported DynamoDB attribute value: {sorted(value)}")


def _to_item(item: Item) -> dict[str, dict[str, str]]:
    return {k: _to_attr(v) for k, v in item.items()}


def _from_item(raw: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
    return {k: _from_attr(v) for k, v in raw.items()}


# ---- Condition rendering -----------------------------------------------------


def render_condition(condition: Condition) -> tuple[str, dict[str, str], dict[str, dict[str, str]]]:
    """
    Render a Condition to (ConditionExpression, ExpressionAttributeNames,
    ExpressionAttributeValues). Attribute names are always aliased (#a0, #a1, ...)
    so reserved words are safe; parameter values are always bound.
    """
    names: dict[str, str] = {}

    def ref(attribute: str) -> str:
        for alias, name in names.items():
            if name == attribute:
                return alias
        alias = f"#a{len(names)}"
        names[alias] = attribute
        return alias

    parts: list[str] = []
    for clause in condition.clauses:
        if isinstance(clause, AttributeNotExists):
            parts.append(f"attribute_not_exists({ref(clause.attribute)})")
        elif isinstance(clause, AttributeEquals):
            parts.append(f"{ref(clause.attribute)} = {clause.param}")
        elif isinstance(clause, AttributeBefore):
            parts.append(f"{ref(clause.attribute)} < {clause.param}")
        else:
            raise TypeError(f"unsupported clause: {clause!r}")

    expression = " OR ".join(f"({p})" for p in parts)
    values = {param: _to_attr(v) for param, v in condition.params.items()}
    return expression, names, values


def is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


# ---- Store -------------------------------------------------------------------


class DynamoLeaseStore:
    """LeaseStore backed by DynamoDB conditional PutItem/DeleteItem."""

    def __init__(self, client: Any, *, executor: Executor | None = None) -> None:
        self.client = client
        self._executor = executor

    @classmethod
    async def connect(
        cls,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        executor: Executor | None = None,
    ) -> DynamoLeaseStore:
        """Create the boto3 client off-loop; credentials resolve the usual boto3 way."""
        loop = asyncio.get_running_loop()
        client = await loop.run_in_executor(
            executor,
            functools.partial(boto3.client, "dynamodb", region_name=region_name, endpoint_url=endpoint_url),
        )
        return cls(client, executor=executor)

    async def _call(self, fn: Callable[..., Any], **request: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, **request))

    async def _conditional(self, fn: Callable[..., Any], **request: Any) -> WriteOutcome:
        try:
            await self._call(fn, **request)
        except ClientError as e:
            if is_condition_failure(e):
                return WriteOutcome.condition_failed
            raise
        return WriteOutcome.ok

    async def conditional_put(self, table: TableName, item: Item, condition: Condition) -> WriteOutcome:
        expression, names, values = render_condition(condition)
        _log.debug("put_item", event="lease.dynamodb.put", table=table, condition=expression)
        return await self._conditional(
            self.client.put_item,
            TableName=table,
            Item=_to_item(item),
            ConditionExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    async def conditional_delete(self, table: TableName, key: Item, condition: Condition) -> WriteOutcome:
        expression, names, values = render_condition(condition)
        _log.debug("delete_item", event="lease.dynamodb.delete", table=table, condition=expression)
        return await self._conditional(
            self.client.delete_item,
            TableName=table,
            Key=_to_item(key),
            ConditionExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    async def get(self, table: TableName, key: Item) -> Item | None:
        resp = await self._call(self.client.get_item, TableName=table, Key=_to_item(key), ConsistentRead=True)
        raw = resp.get("Item")
        return _from_item(raw) if raw else None
