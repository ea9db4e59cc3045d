from __future__ import annotations

"""
leasekit.core.types
===================

Shared type aliases used across the codebase.
Keep this module **tiny** and dependency-free.
"""

from collections.abc import Mapping
from typing import Any, Final

# ---- Items -------------------------------------------------------------------

# One stored row, keyed by attribute name (str and int values only).
Item = Mapping[str, Any]

# ---- Time & IDs --------------------------------------------------------------

Seconds = float
Timestamp = int  # epoch timestamp in the deployment-wide TimeUnit

LeaseKey = str
HolderId = str
TableName = str
AttributeName = str

# ---- Constants ---------------------------------------------------------------

# Node identity used when neither config nor the host name yields one.
FALLBACK_NODE_ID: Final[str] = "unknown-node"


__all__ = [
    "Item",
    "Seconds",
    "Timestamp",
    "LeaseKey",
    "HolderId",
    "TableName",
    "AttributeName",
    "FALLBACK_NODE_ID",
]
