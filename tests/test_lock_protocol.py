# tests/test_lock_protocol.py
"""
Lock/unlock protocol against an atomic in-memory store.

Covers:
- First acquisition on an empty store writes {key, holder, expiration}
- Renewal by the holder (extend and shorten)
- Denial while another node's lease is live; row unchanged
- Theft after expiry, including a past expiration as an escape hatch
- Idempotent release; release refused for a non-holder
- Transport failures pass through unchanged
- inspect() derives unheld/live/stale from the row and the local clock
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from leasekit.core.time import to_timestamp
from leasekit.errors import LockDenied, NotOwnedError
from leasekit.lock import LeaseState
from tests.conftest import TABLE
from tests.helpers import StoreUnavailable, get_record_by_event

pytestmark = pytest.mark.protocol


def _row(store, key):
    return store.row(TABLE, key)


@pytest.mark.asyncio
async def test_lock_on_empty_store_creates_row(store, clock, make_manager):
    a = make_manager("node-a")
    exp = clock.now_dt() + timedelta(minutes=10)

    assert await a.lock("k", exp) is True

    assert _row(store, "k") == {
        "lock_key": "k",
        "nodeId": "node-a",
        "lease_expiration": to_timestamp(exp, a.identity.time_unit),
    }


@pytest.mark.asyncio
async def test_holder_can_renew_and_shorten(store, clock, make_manager):
    a = make_manager("node-a")
    unit = a.identity.time_unit
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=10))

    longer = clock.now_dt() + timedelta(minutes=30)
    assert await a.lock("k", longer) is True
    assert _row(store, "k")["lease_expiration"] == to_timestamp(longer, unit)
    assert _row(store, "k")["nodeId"] == "node-a"

    shorter = clock.now_dt() + timedelta(seconds=5)
    assert await a.lock("k", shorter) is True
    assert _row(store, "k")["lease_expiration"] == to_timestamp(shorter, unit)


@pytest.mark.asyncio
async def test_other_node_denied_while_live(store, clock, make_manager, caplog):
    a, b = make_manager("node-a"), make_manager("node-b")
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=10))
    before = dict(_row(store, "k"))

    caplog.set_level(logging.INFO, logger="leasekit")
    assert await b.lock("k", clock.now_dt() + timedelta(minutes=10)) is False

    assert _row(store, "k") == before
    rec = get_record_by_event(caplog, "lease.lock.denied")
    assert rec.key == "k" and rec.node_id == "node-b"


@pytest.mark.asyncio
async def test_stale_lease_is_taken_over(store, clock, make_manager):
    a, b = make_manager("node-a"), make_manager("node-b")
    assert await a.lock("k", clock.now_dt() + timedelta(seconds=30))

    clock.advance(timedelta(seconds=31))
    assert await b.lock("k", clock.now_dt() + timedelta(minutes=10)) is True
    assert _row(store, "k")["nodeId"] == "node-b"

    # the previous holder is now the one being denied
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=10)) is False


@pytest.mark.asyncio
async def test_lease_at_exact_expiration_is_not_stealable(clock, make_manager):
    a, b = make_manager("node-a"), make_manager("node-b")
    exp = clock.now_dt() + timedelta(seconds=30)
    assert await a.lock("k", exp)

    clock.set(exp)
    assert await b.lock("k", clock.now_dt() + timedelta(minutes=1)) is False


@pytest.mark.asyncio
async def test_past_expiration_makes_lease_immediately_stale(store, clock, make_manager):
    a, b = make_manager("node-a"), make_manager("node-b")
    assert await a.lock("k", clock.now_dt() - timedelta(seconds=10)) is True

    assert await b.lock("k", clock.now_dt() + timedelta(minutes=10)) is True
    assert _row(store, "k")["nodeId"] == "node-b"
    await b.unlock("k")


@pytest.mark.asyncio
async def test_unlock_by_holder_is_idempotent(store, clock, make_manager):
    a = make_manager("node-a")
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=10))

    await a.unlock("k")
    assert _row(store, "k") is None
    await a.unlock("k")
    assert _row(store, "k") is None


@pytest.mark.asyncio
async def test_unlock_never_acquired_key_succeeds(store, make_manager):
    await make_manager("node-a").unlock("never-seen")
    assert _row(store, "never-seen") is None


@pytest.mark.asyncio
async def test_unlock_by_non_holder_is_refused(store, clock, make_manager, caplog):
    a, b = make_manager("node-a"), make_manager("node-b")
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=10))
    before = dict(_row(store, "k"))

    caplog.set_level(logging.INFO, logger="leasekit")
    with pytest.raises(NotOwnedError) as exc_info:
        await b.unlock("k")

    assert exc_info.value.key == "k"
    assert exc_info.value.holder == "node-b"
    assert _row(store, "k") == before
    assert get_record_by_event(caplog, "lease.unlock.not_owner").levelno == logging.WARNING


@pytest.mark.asyncio
async def test_holder_may_release_its_stale_lease(store, clock, make_manager):
    a = make_manager("node-a")
    assert await a.lock("k", clock.now_dt() + timedelta(seconds=1))
    clock.advance(timedelta(minutes=5))

    await a.unlock("k")
    assert _row(store, "k") is None


@pytest.mark.asyncio
async def test_store_failure_on_lock_propagates_unchanged(store, clock, make_manager):
    a = make_manager("node-a")
    failure = StoreUnavailable(503, "service unavailable")
    store.fail_with = failure

    with pytest.raises(StoreUnavailable) as exc_info:
        await a.lock("k", clock.now_dt() + timedelta(minutes=1))
    assert exc_info.value is failure
    assert _row(store, "k") is None


@pytest.mark.asyncio
async def test_store_failure_on_unlock_propagates_unchanged(store, clock, make_manager, caplog):
    a = make_manager("node-a")
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=1))
    failure = StoreUnavailable()
    store.fail_with = failure

    caplog.set_level(logging.INFO, logger="leasekit")
    with pytest.raises(StoreUnavailable) as exc_info:
        await a.unlock("k")
    assert exc_info.value is failure
    rec = get_record_by_event(caplog, "lease.unlock.error")
    assert rec.exc_info is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_key", ["", None])
async def test_empty_key_rejected_before_store_call(store, clock, make_manager, bad_key):
    a = make_manager("node-a")
    with pytest.raises(ValueError):
        await a.lock(bad_key, clock.now_dt())
    with pytest.raises(ValueError):
        await a.unlock(bad_key)
    assert store.calls == []


@pytest.mark.asyncio
async def test_lock_sends_three_clause_condition(store, clock, make_manager):
    a = make_manager("node-a")
    await a.lock("k", clock.now_dt())
    await a.unlock("k")

    (put_op, _, put_cond), (del_op, _, del_cond) = store.calls
    assert put_op == "put"
    assert put_cond == "(attribute_not_exists(lock_key)) OR (nodeId = :holder) OR (lease_expiration < :now)"
    assert del_op == "delete"
    assert del_cond == "(attribute_not_exists(lock_key)) OR (nodeId = :holder)"


# ---- hold() -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_hold_releases_on_exit(store, make_manager):
    a = make_manager("node-a")
    async with a.hold("k", timedelta(minutes=1)) as lease:
        assert lease.holder == "node-a"
        assert _row(store, "k")["nodeId"] == "node-a"
    assert _row(store, "k") is None


@pytest.mark.asyncio
async def test_hold_raises_lock_denied(store, clock, make_manager):
    a, b = make_manager("node-a"), make_manager("node-b")
    assert await a.lock("k", clock.now_dt() + timedelta(minutes=10))

    with pytest.raises(LockDenied):
        async with b.hold("k", timedelta(minutes=1)):
            pytest.fail("body must not run without the lease")
    assert _row(store, "k")["nodeId"] == "node-a"


@pytest.mark.asyncio
async def test_hold_releases_when_body_raises(store, make_manager):
    a = make_manager("node-a")
    with pytest.raises(RuntimeError, match="boom"):
        async with a.hold("k", timedelta(minutes=1)):
            raise RuntimeError("boom")
    assert _row(store, "k") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout", [None, 1.0])
async def test_hold_releases_when_task_cancelled(store, make_manager, timeout):
    a = make_manager("node-a")
    entered = asyncio.Event()

    async def worker():
        async with a.hold("k", timedelta(minutes=1), timeout=timeout):
            entered.set()
            await asyncio.sleep(3600)

    task = asyncio.create_task(worker())
    await entered.wait()
    assert _row(store, "k")["nodeId"] == "node-a"

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert _row(store, "k") is None


@pytest.mark.asyncio
async def test_hold_surfaces_lost_ownership_on_exit(store, clock, make_manager):
    a, b = make_manager("node-a"), make_manager("node-b")
    with pytest.raises(NotOwnedError):
        async with a.hold("k", timedelta(seconds=5)):
            clock.advance(timedelta(seconds=10))
            assert await b.lock("k", clock.now_dt() + timedelta(minutes=1))
    assert _row(store, "k")["nodeId"] == "node-b"


# ---- inspect() --------------------------------------------------------------


@pytest.mark.asyncio
async def test_inspect_follows_state_machine(clock, make_manager):
    a = make_manager("node-a")

    status = await a.inspect("k")
    assert status.state is LeaseState.unheld and status.holder is None

    await a.lock("k", clock.now_dt() + timedelta(seconds=30))
    status = await a.inspect("k")
    assert status.state is LeaseState.held_live
    assert status.holder == "node-a"

    clock.advance(timedelta(seconds=31))
    status = await a.inspect("k")
    assert status.state is LeaseState.held_stale
    assert status.expiration < status.now

    await a.unlock("k")
    assert (await a.inspect("k")).state is LeaseState.unheld


# ---- metrics ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_metrics_count_outcomes(store, clock, make_manager, registry):
    a, b = make_manager("node-a"), make_manager("node-b")
    await a.lock("k", clock.now_dt() + timedelta(minutes=1))
    await b.lock("k", clock.now_dt() + timedelta(minutes=1))
    with pytest.raises(NotOwnedError):
        await b.unlock("k")
    await a.unlock("k")

    def count(op, outcome):
        return registry.get_sample_value("leasekit_lock_operations_total", {"op": op, "outcome": outcome})

    assert count("lock", "acquired") == 1
    assert count("lock", "denied") == 1
    assert count("unlock", "not_owner") == 1
    assert count("unlock", "released") == 1
    assert registry.get_sample_value("leasekit_store_latency_seconds_count", {"op": "lock"}) == 2
