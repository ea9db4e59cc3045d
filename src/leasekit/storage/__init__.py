# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Lease store contract and condition builder.

Concrete stores live in their own modules (e.g. `leasekit.storage.dynamodb`)
so their client libraries are imported only when used.
"""

from .base import LeaseRecord, LeaseStore, WriteOutcome
from .conditions import (
    AttributeBefore,
    AttributeEquals,
    AttributeNotExists,
    Condition,
    lock_condition,
    unlock_condition,
)

__all__ = [
    # base
    "LeaseRecord",
    "LeaseStore",
    "WriteOutcome",
    # conditions
    "AttributeBefore",
    "AttributeEquals",
    "AttributeNotExists",
    "Condition",
    "lock_condition",
    "unlock_condition",
]
