# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Condition builder for conditional lease writes.

A Condition is a disjunction of clauses over the stored item plus the bound
parameters those clauses reference. Parameter values are captured when the
condition is built, so one operation sees one snapshot of `now` and of the
caller's identity. Stores render clauses to their own predicate language and
pass parameters separately; values are never spliced into predicate text.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..core.types import AttributeName, HolderId, Item, Timestamp

__all__ = [
    "PARAM_HOLDER",
    "PARAM_NOW",
    "AttributeBefore",
    "AttributeEquals",
    "AttributeNotExists",
    "Clause",
    "Condition",
    "lock_condition",
    "unlock_condition",
]

PARAM_HOLDER = ":holder"
PARAM_NOW = ":now"


@dataclass(frozen=True)
class AttributeNotExists:
    """True when there is no row, or the row lacks `attribute`."""

    attribute: AttributeName

    def evaluate(self, item: Item | None, params: Mapping[str, Any]) -> bool:
        return item is None or self.attribute not in item

    def describe(self) -> str:
        return f"attribute_not_exists({self.attribute})"


@dataclass(frozen=True)
class AttributeEquals:
    """True when the stored attribute equals the bound parameter."""

    attribute: AttributeName
    param: str

    def evaluate(self, item: Item | None, params: Mapping[str, Any]) -> bool:
        return item is not None and self.attribute in item and item[self.attribute] == params[self.param]

    def describe(self) -> str:
        return f"{self.attribute} = {self.param}"


@dataclass(frozen=True)
class AttributeBefore:
    """True when the stored attribute is strictly less than the bound parameter."""

    attribute: AttributeName
    param: str

    def evaluate(self, item: Item | None, params: Mapping[str, Any]) -> bool:
        return item is not None and self.attribute in item and item[self.attribute] < params[self.param]

    def describe(self) -> str:
        return f"{self.attribute} < {self.param}"


Clause = AttributeNotExists | AttributeEquals | AttributeBefore


@dataclass(frozen=True)
class Condition:
    """OR of `clauses`, evaluated against a single stored item."""

    clauses: tuple[Clause, ...]
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.clauses:
            raise ValueError("a condition needs at least one clause")
        for clause in self.clauses:
            param = getattr(clause, "param", None)
            if param is not None and param not in self.params:
                raise ValueError(f"unbound parameter {param!r} in {clause.describe()}")
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def evaluate(self, item: Item | None) -> bool:
        """Reference semantics for stores that evaluate the predicate themselves."""
        return any(c.evaluate(item, self.params) for c in self.clauses)

    def describe(self) -> str:
        return " OR ".join(f"({c.describe()})" for c in self.clauses)


def lock_condition(
    *,
    key_attribute: AttributeName,
    holder_attribute: AttributeName,
    expiration_attribute: AttributeName,
    holder: HolderId,
    now: Timestamp,
) -> Condition:
    """
    Acquire when the row is absent, already ours (renewal), or stale (theft).

    Staleness is judged against the caller's `now`; two nodes with skewed
    clocks may both consider the same lease stale.
    """
    return Condition(
        clauses=(
            AttributeNotExists(key_attribute),
            AttributeEquals(holder_attribute, PARAM_HOLDER),
            AttributeBefore(expiration_attribute, PARAM_NOW),
        ),
        params={PARAM_HOLDER: holder, PARAM_NOW: now},
    )


def unlock_condition(
    *,
    key_attribute: AttributeName,
    holder_attribute: AttributeName,
    holder: HolderId,
) -> Condition:
    """Release when the row is absent (idempotent) or ours."""
    return Condition(
        clauses=(
            AttributeNotExists(key_attribute),
            AttributeEquals(holder_attribute, PARAM_HOLDER),
        ),
        params={PARAM_HOLDER: holder},
    )
