from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("leasekit")
except PackageNotFoundError:  # pragma: no cover - running from a source tree
    __version__ = "0.0.0"

from .core.config import IdentityResolver, LockConfig, ResolvedIdentity
from .core.time import ManualClock, SystemClock, TimeUnit
from .errors import ConfigError, DeadlineExceeded, LeaseError, LockDenied, NotOwnedError
from .lock import LeaseState, LeaseStatus, LockManager
from .storage.base import LeaseRecord, LeaseStore, WriteOutcome

__all__ = [
    "ConfigError",
    "DeadlineExceeded",
    "IdentityResolver",
    "LeaseError",
    "LeaseRecord",
    "LeaseState",
    "LeaseStatus",
    "LeaseStore",
    "LockConfig",
    "LockDenied",
    "LockManager",
    "ManualClock",
    "NotOwnedError",
    "ResolvedIdentity",
    "SystemClock",
    "TimeUnit",
    "WriteOutcome",
    "__version__",
]
