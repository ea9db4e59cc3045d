# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Translate store write outcomes into lease outcomes.

Only `WriteOutcome` values reach this module. Store exceptions never do: they
propagate from the store call unchanged, and nothing here retries.
"""

from .errors import NotOwnedError
from .storage.base import WriteOutcome

__all__ = ["check_release", "lock_acquired"]


def lock_acquired(outcome: WriteOutcome) -> bool:
    """True if the conditional put applied; False if a live lease belongs to someone else."""
    if outcome is WriteOutcome.ok:
        return True
    if outcome is WriteOutcome.condition_failed:
        return False
    raise TypeError(f"unexpected write outcome: {outcome!r}")


def check_release(outcome: WriteOutcome, key: str, holder: str) -> None:
    """Return if the conditional delete applied; raise NotOwnedError if another node holds the row."""
    if outcome is WriteOutcome.ok:
        return
    if outcome is WriteOutcome.condition_failed:
        raise NotOwnedError(key, holder)
    raise TypeError(f"unexpected write outcome: {outcome!r}")
