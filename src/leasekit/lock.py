# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Lease lock manager.

A node acquires a named lease by one conditional put that succeeds when the
row is absent, already held by this node (renewal, extending or shortening),
or stale by this node's clock (theft). It releases with one conditional
delete that succeeds when the row is absent or held by this node.

Clock skew:
    The store has no notion of time, so every `now` comes from the caller's
    clock. With node B's clock far ahead of node A's:

      - A locks "job" until 250 (A reads 200, B reads 250)
      - B locks "job" until 350 (A reads 210, B reads 260): for B the lease
        expired, so the theft succeeds and both nodes believe they hold it.

    This is accepted behaviour. Run NTP, avoid expirations finer than a few
    seconds, and pad expirations.

Each public operation is exactly one store round-trip. There are no retries;
a deadline or cancellation leaves the store state unknown to the caller.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import TypeVar

from pydantic import BaseModel, ConfigDict

from .classify import check_release, lock_acquired
from .core.config import IdentityResolver, LockConfig, ResolvedIdentity
from .core.log import get_logger
from .core.time import Clock, SystemClock, to_timestamp
from .core.types import Seconds
from .errors import DeadlineExceeded, LockDenied, NotOwnedError
from .observability.metrics import LockMetrics, default_metrics
from .storage.base import LeaseRecord, LeaseStore
from .storage.conditions import lock_condition, unlock_condition

__all__ = ["LeaseState", "LeaseStatus", "LockManager"]

T = TypeVar("T")


class LeaseState(str, Enum):
    """Per-key state derived from the stored row and the local clock."""

    unheld = "unheld"
    held_live = "held_live"
    held_stale = "held_stale"


class LeaseStatus(BaseModel):
    """Snapshot returned by LockManager.inspect(); informational only."""

    model_config = ConfigDict(frozen=True)

    key: str
    state: LeaseState
    holder: str | None = None
    expiration: int | None = None
    now: int


def _require_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValueError("lease key must be a non-empty string")


class LockManager:
    """
    Acquire, renew and release leases for one node identity.

    Safe to share between tasks and threads: the only in-process state is the
    identity, resolved once on first use.
    """

    def __init__(
        self,
        store: LeaseStore,
        config: LockConfig | None = None,
        *,
        clock: Clock | None = None,
        metrics: LockMetrics | None = None,
    ) -> None:
        self.store = store
        self.config = config or LockConfig()
        self.clock = clock or SystemClock()
        self.metrics = metrics or default_metrics()
        self.log = get_logger("lock")
        self._resolver = IdentityResolver(self.config)

    @property
    def identity(self) -> ResolvedIdentity:
        return self._resolver.resolve()

    @property
    def node_id(self) -> str:
        return self.identity.node_id

    # ---- Store round-trip ----------------------------------------------------

    async def _round_trip(
        self,
        op: str,
        key: str,
        timeout: Seconds | None,
        call: Callable[[], Awaitable[T]],
    ) -> tuple[T, float]:
        started = time.perf_counter()
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                result = await call()
        except TimeoutError as e:
            if not deadline.expired():
                self._store_failed(op, key)
                raise
            self.metrics.record(op, "deadline")
            self.log.warning(
                "lease store deadline exceeded",
                event=f"lease.{op}.deadline",
                key=key,
                node_id=self.node_id,
                timeout=timeout,
            )
            raise DeadlineExceeded(op, key, timeout) from e
        except asyncio.CancelledError:
            self.metrics.record(op, "cancelled")
            self.log.info("lease operation cancelled", event=f"lease.{op}.cancelled", key=key, node_id=self.node_id)
            raise
        except Exception:
            self._store_failed(op, key)
            raise
        return result, time.perf_counter() - started

    def _store_failed(self, op: str, key: str) -> None:
        self.metrics.record(op, "error")
        self.log.warning(
            "lease store call failed",
            event=f"lease.{op}.error",
            key=key,
            node_id=self.node_id,
            exc_info=True,
        )

    # ---- Public API ------------------------------------------------------------

    async def lock(self, key: str, expiration: datetime, *, timeout: Seconds | None = None) -> bool:
        """
        Try to hold `key` until `expiration`.

        Returns True when acquired, renewed or taken over from a stale holder,
        False when another node holds a live lease. A past `expiration` is
        accepted and leaves the lease immediately stale.

        Raises:
            DeadlineExceeded: `timeout` elapsed first; the write may have applied.
            Exception: any store failure, unchanged.
        """
        _require_key(key)
        ident = self.identity
        now = to_timestamp(self.clock.now_dt(), ident.time_unit)
        record = LeaseRecord(key=key, holder=ident.node_id, expiration=to_timestamp(expiration, ident.time_unit))
        condition = lock_condition(
            key_attribute=ident.key_attribute,
            holder_attribute=ident.holder_attribute,
            expiration_attribute=ident.expiration_attribute,
            holder=ident.node_id,
            now=now,
        )

        outcome, elapsed = await self._round_trip(
            "lock",
            key,
            timeout,
            lambda: self.store.conditional_put(ident.table, record.to_item(ident), condition),
        )
        acquired = lock_acquired(outcome)

        self.metrics.record("lock", "acquired" if acquired else "denied", elapsed)
        self.log.info(
            "lock acquired" if acquired else "lock held by another node",
            event="lease.lock.acquired" if acquired else "lease.lock.denied",
            key=key,
            node_id=ident.node_id,
            expiration=record.expiration,
            now=now,
        )
        return acquired

    async def unlock(self, key: str, *, timeout: Seconds | None = None) -> None:
        """
        Release `key` if this node holds it. Releasing an absent key succeeds.

        Raises:
            NotOwnedError: the row names a different holder; nothing changed.
            DeadlineExceeded: `timeout` elapsed first; the delete may have applied.
            Exception: any store failure, unchanged.
        """
        _require_key(key)
        ident = self.identity
        condition = unlock_condition(
            key_attribute=ident.key_attribute,
            holder_attribute=ident.holder_attribute,
            holder=ident.node_id,
        )

        outcome, elapsed = await self._round_trip(
            "unlock",
            key,
            timeout,
            lambda: self.store.conditional_delete(ident.table, {ident.key_attribute: key}, condition),
        )
        try:
            check_release(outcome, key, ident.node_id)
        except NotOwnedError:
            self.metrics.record("unlock", "not_owner", elapsed)
            self.log.warning("unlock refused: not owner", event="lease.unlock.not_owner", key=key, node_id=ident.node_id)
            raise

        self.metrics.record("unlock", "released", elapsed)
        self.log.info("lock released", event="lease.unlock.released", key=key, node_id=ident.node_id)

    @asynccontextmanager
    async def hold(self, key: str, ttl: timedelta, *, timeout: Seconds | None = None) -> AsyncIterator[LeaseRecord]:
        """
        Hold `key` for the duration of the block, expiring after `ttl` at the latest.

            async with manager.hold("reports:daily", timedelta(minutes=5)):
                ...

        Raises LockDenied if another node holds a live lease. The lease is
        released on exit; a failed release is logged when the block itself
        raised, and raised otherwise.
        """
        expiration = self.clock.now_dt() + ttl
        if not await self.lock(key, expiration, timeout=timeout):
            raise LockDenied(key)
        ident = self.identity
        lease = LeaseRecord(key=key, holder=ident.node_id, expiration=to_timestamp(expiration, ident.time_unit))
        try:
            yield lease
        except BaseException:
            try:
                await self.unlock(key, timeout=timeout)
            except Exception:
                self.log.warning(
                    "release after failed block also failed",
                    event="lease.hold.release_failed",
                    key=key,
                    node_id=ident.node_id,
                    exc_info=True,
                )
            raise
        await self.unlock(key, timeout=timeout)

    async def inspect(self, key: str, *, timeout: Seconds | None = None) -> LeaseStatus:
        """
        Read the row for `key` and classify it against the local clock.

        A lease is reported stale exactly when lock() from another node would
        take it over (stored expiration < now). Never use the result to decide
        ownership: the row can change right after the read.
        """
        _require_key(key)
        ident = self.identity
        item, elapsed = await self._round_trip(
            "inspect",
            key,
            timeout,
            lambda: self.store.get(ident.table, {ident.key_attribute: key}),
        )
        now = to_timestamp(self.clock.now_dt(), ident.time_unit)
        self.metrics.record("inspect", "read", elapsed)

        if item is None:
            return LeaseStatus(key=key, state=LeaseState.unheld, now=now)
        record = LeaseRecord.from_item(item, ident)
        state = LeaseState.held_stale if record.expiration < now else LeaseState.held_live
        return LeaseStatus(key=key, state=state, holder=record.holder, expiration=record.expiration, now=now)
