# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Lease store contract (DB-agnostic).

The store is the single authority on who wins a race: each conditional write
is evaluated and applied atomically, server-side, against one row. Lease
records are plain items whose attribute names come from the lock config.

Implementations may use DynamoDB or any store with single-row conditional
put/delete. Transport, auth, retries and table provisioning are theirs.
"""

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import ResolvedIdentity
from ..core.types import Item, TableName
from .conditions import Condition

__all__ = [
    "LeaseRecord",
    "LeaseStore",
    "WriteOutcome",
]


class WriteOutcome(str, Enum):
    """Tagged result of a conditional write that reached the store."""

    ok = "ok"
    condition_failed = "condition_failed"


class LeaseRecord(BaseModel):
    """
    One lease row.

    Fields:
        key: Identifier of the protected resource.
        holder: Node believed to own the lease.
        expiration: Instant (in the deployment TimeUnit) after which the lease is stale.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(min_length=1)
    holder: str = Field(min_length=1)
    expiration: int

    def to_item(self, ident: ResolvedIdentity) -> dict[str, Any]:
        return {
            ident.key_attribute: self.key,
            ident.holder_attribute: self.holder,
            ident.expiration_attribute: self.expiration,
        }

    @classmethod
    def from_item(cls, item: Item, ident: ResolvedIdentity) -> LeaseRecord:
        return cls(
            key=item[ident.key_attribute],
            holder=item[ident.holder_attribute],
            expiration=int(item[ident.expiration_attribute]),
        )


@runtime_checkable
class LeaseStore(Protocol):
    """
    Minimal async conditional store.

    Notes:
        - `condition_failed` is the only failure reported as a value.
        - Every other failure is raised as the implementation's own exception
          and must not be translated.
        - `key` arguments carry only the primary-key attribute.
    """

    async def conditional_put(self, table: TableName, item: Item, condition: Condition) -> WriteOutcome:
        """Write `item` (replacing any existing row) iff `condition` holds."""

    async def conditional_delete(self, table: TableName, key: Item, condition: Condition) -> WriteOutcome:
        """Delete the row iff `condition` holds. An absent row is evaluated as `None`."""

    async def get(self, table: TableName, key: Item) -> Item | None:
        """Strongly consistent read of one row, for inspection only."""
