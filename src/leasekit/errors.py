# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for leasekit.

Only domain outcomes get their own types. Failures of the underlying store
(timeouts, throttling, authorization, malformed requests) are never wrapped:
they reach the caller as the exception the store raised, and the caller owns
any retry policy.
"""


class LeaseError(Exception):
    """Base class for all leasekit errors."""


class NotOwnedError(LeaseError):
    """
    Release was refused: the row exists and names a different holder.

    The caller's own lease is gone (expired and taken over, or never held);
    this is an ownership violation, not an infrastructure fault.
    """

    def __init__(self, key: str, holder: str) -> None:
        super().__init__(f"Key {key!r} is locked by another node (caller: {holder!r}).")
        self.key = key
        self.holder = holder


class LockDenied(LeaseError):
    """
    Another node holds a live lease on the key.

    `LockManager.lock()` reports this as `False`; only the `hold()` context
    manager raises it, because a `with` body cannot run without the lease.
    """

    def __init__(self, key: str) -> None:
        super().__init__(f"Key {key!r} is held by another node.")
        self.key = key


class DeadlineExceeded(LeaseError):
    """
    The caller's deadline expired before the store answered.

    The write may or may not have been applied. Retrying is safe for lock and
    unlock because both converge on the caller's intended final state.
    """

    def __init__(self, op: str, key: str, timeout: float) -> None:
        super().__init__(f"{op} on key {key!r} exceeded deadline of {timeout}s; outcome unknown.")
        self.op = op
        self.key = key
        self.timeout = timeout


class ConfigError(LeaseError, ValueError):
    """Invalid lock configuration."""
