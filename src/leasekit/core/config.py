from __future__ import annotations

"""
leasekit.core.config
====================

Lock configuration value object and the one-time identity resolver.
- LockConfig: table/attribute names, node identity and timestamp unit,
  validated at construction; optional JSON file + env loading.
- IdentityResolver: resolves the effective identity once per LockManager,
  safely under concurrent first use, then serves the cached value.
"""

import json
import logging
import os
import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import ConfigError
from .log import get_logger, warn_once
from .time import TimeUnit
from .types import FALLBACK_NODE_ID, AttributeName, HolderId, TableName

_log = get_logger("config")


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
            _log.warning("config file is not a JSON object", event="lease.config.ignored", path=str(path))
    except (OSError, ValueError) as e:
        # Fail soft; env and overrides still apply
        _log.warning("config file unreadable", event="lease.config.ignored", path=str(path), error=str(e))
    return {}


# ---------------------------------------------------------------------------


@dataclass
class LockConfig:
    """Where leases live and who this node is. Defaults match existing lock tables."""

    table: TableName = "locks"
    key_attribute: AttributeName = "lock_key"
    holder_attribute: AttributeName = "nodeId"
    expiration_attribute: AttributeName = "lease_expiration"

    # None -> host name, then FALLBACK_NODE_ID
    node_id: HolderId | None = None

    # Must be identical for every writer of the table
    time_unit: TimeUnit = TimeUnit.microseconds

    def __post_init__(self) -> None:
        for name in ("table", "key_attribute", "holder_attribute", "expiration_attribute"):
            val = getattr(self, name)
            if not isinstance(val, str) or not val:
                raise ConfigError(f"{name} must be a non-empty string")
        attrs = {self.key_attribute, self.holder_attribute, self.expiration_attribute}
        if len(attrs) != 3:
            raise ConfigError("key, holder and expiration attributes must be distinct")
        if self.node_id is not None and (not isinstance(self.node_id, str) or not self.node_id):
            raise ConfigError("node_id must be a non-empty string when set")
        try:
            self.time_unit = TimeUnit(self.time_unit)
        except ValueError as e:
            raise ConfigError(f"unknown time_unit: {self.time_unit!r}") from e

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> LockConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - LEASEKIT_TABLE
          - LEASEKIT_NODE_ID
          - LEASEKIT_TIME_UNIT (seconds|microseconds)
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        for env, field_name in (
            ("LEASEKIT_TABLE", "table"),
            ("LEASEKIT_NODE_ID", "node_id"),
            ("LEASEKIT_TIME_UNIT", "time_unit"),
        ):
            if os.getenv(env):
                data[field_name] = os.environ[env]

        if overrides:
            data.update(overrides)

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"invalid lock config: {e}") from e


# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedIdentity:
    """Immutable snapshot read by every lock operation after resolution."""

    table: TableName
    key_attribute: AttributeName
    holder_attribute: AttributeName
    expiration_attribute: AttributeName
    node_id: HolderId
    time_unit: TimeUnit


def _host_identity() -> str | None:
    try:
        return socket.gethostname() or None
    except OSError:
        return None


class IdentityResolver:
    """
    Resolve a LockConfig into a ResolvedIdentity exactly once.

    Resolution never awaits, so a plain threading.Lock serializes both threads
    and event-loop tasks racing on first use.
    """

    def __init__(self, config: LockConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._resolved: ResolvedIdentity | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved is not None

    def resolve(self) -> ResolvedIdentity:
        ident = self._resolved
        if ident is not None:
            return ident
        with self._lock:
            if self._resolved is None:
                self._resolved = self._build()
            return self._resolved

    def _build(self) -> ResolvedIdentity:
        cfg = self._config
        node_id = cfg.node_id
        source = "config"
        if not node_id:
            node_id = _host_identity()
            source = "hostname"
            if node_id:
                warn_once(
                    _log,
                    "lease.identity.hostname",
                    "no node_id configured; using host name as lease holder",
                    level=logging.INFO,
                    node_id=node_id,
                )
        if not node_id:
            node_id = FALLBACK_NODE_ID
            source = "fallback"
            warn_once(
                _log,
                "lease.identity.fallback",
                "no node_id configured and host name unavailable; using fallback identity",
                node_id=node_id,
            )

        ident = ResolvedIdentity(
            table=cfg.table,
            key_attribute=cfg.key_attribute,
            holder_attribute=cfg.holder_attribute,
            expiration_attribute=cfg.expiration_attribute,
            node_id=node_id,
            time_unit=cfg.time_unit,
        )
        _log.debug(
            "identity resolved",
            event="lease.identity.resolved",
            node_id=node_id,
            source=source,
            table=cfg.table,
            time_unit=cfg.time_unit.value,
        )
        return ident
