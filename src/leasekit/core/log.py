from __future__ import annotations

"""
leasekit.core.log
=================

Structured logging for the lease library:
- Context propagation via contextvars (node_id, key, table, ...).
- JSON formatter for services; compact human formatter for local debugging.
- LoggerAdapter accepting arbitrary keyword fields:
      log.info("lock.acquired", event="lease.lock.acquired", key=key, holder=node)
- Silent by default: the library logger only carries a NullHandler until an
  application calls enable_stdout_logging() or configure_from_env().
"""

import contextvars
import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "warn_once",
]

_LOGGER_NAME: Final[str] = "leasekit"
_HANDLER_NAME: Final[str] = "_leasekit_stdout_handler"

# ---------- Context ----------

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar("leasekit_log_ctx", default=None)


def _merged(fields: dict[str, Any]) -> dict[str, Any]:
    ctx = _log_context.get()
    out = dict(ctx) if ctx else {}
    out.update({k: v for k, v in fields.items() if v is not None})
    return out


def bind_context(**fields: Any) -> None:
    """Merge fields into the structured log context of the current task/thread."""
    _log_context.set(_merged(fields))


@contextmanager
def log_context(**fields: Any):
    """Add fields to the log context for the duration of the block."""
    token = _log_context.set(_merged(fields))
    try:
        yield
    finally:
        _log_context.reset(token)


# ---------- Formatters ----------

_STD_ATTRS: Final[frozenset[str]] = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _iso_utc_ms(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, context fields,
    keyword extras and, when present, error type/message.
    """

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _iso_utc_ms(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        ctx = _log_context.get()
        if ctx:
            out.update(ctx)
        for k, v in record.__dict__.items():
            if k not in _STD_ATTRS and k not in out:
                out[k] = v

        if record.exc_info and record.exc_info[0] is not None:
            err: dict[str, Any] = {"type": record.exc_info[0].__name__, "message": str(record.exc_info[1])}
            if self.include_stack:
                err["stack"] = self.formatException(record.exc_info)
            out["error"] = err

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Single-line formatter showing the lease fields most useful when debugging."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"

    _shown: ClassVar[tuple[str, ...]] = ("node_id", "key", "holder", "outcome")

    def format(self, record: logging.LogRecord) -> str:
        s = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        fields = {**(_log_context.get() or {}), **record.__dict__}
        compact = [f"{k}={fields[k]}" for k in self._shown if fields.get(k) is not None]
        if compact:
            s += "  [" + ", ".join(compact) + "]"
        if record.exc_info:
            s += "\n" + self.formatException(record.exc_info)
        return s


class ContextFilter(logging.Filter):
    """Copy the current log context onto records so any handler can see it."""

    def filter(self, record: logging.LogRecord) -> bool:
        for k, v in (_log_context.get() or {}).items():
            record.__dict__.setdefault(k, v)
        return True


class _KwExtraAdapter(logging.LoggerAdapter):
    """Move unknown keyword arguments into `extra=` so callers can log fields directly."""

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for k in [k for k in kwargs if k not in self._passthrough]:
            name = f"field_{k}" if k in _STD_ATTRS else k
            extra.setdefault(name, kwargs.pop(k))
        kwargs["extra"] = extra
        return msg, kwargs


# ---------- One-shot warnings ----------

_WARN_ONCE_SEEN: set[str] = set()
_WARN_ONCE_LOCK = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log `msg` only the first time `code` is seen in this process."""
    with _WARN_ONCE_LOCK:
        if code in _WARN_ONCE_SEEN:
            return
        _WARN_ONCE_SEEN.add(code)
    adapter = logger if isinstance(logger, logging.LoggerAdapter) else _KwExtraAdapter(logger, {})
    adapter.log(level, msg, code=code, **extra)


# ---------- Public configuration API ----------


def _root() -> logging.Logger:
    lg = logging.getLogger(_LOGGER_NAME)
    if not any(isinstance(h, logging.NullHandler) for h in lg.handlers):
        lg.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in lg.filters):
        lg.addFilter(ContextFilter())
    return lg


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Return a `leasekit.<name>` logger adapter accepting keyword fields."""
    base = _root()
    return _KwExtraAdapter(base.getChild(name) if name else base, {})


def _as_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid level name: {level!r}")
    return resolved


def set_level(level: int | str) -> None:
    """Change the library logger level at runtime (children inherit it)."""
    _root().setLevel(_as_level(level))


def enable_stdout_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    pretty: bool = False,
    include_stack: bool = False,
) -> None:
    """
    Attach a stdout handler to the library logger, replacing a previous one.
    pretty=True wins over json_output.
    """
    lg = _root()
    disable_stdout_logging()

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    h = logging.StreamHandler(sys.stdout)
    h.set_name(_HANDLER_NAME)
    h.setLevel(_as_level(level))
    h.setFormatter(fmt)
    lg.addHandler(h)


def disable_stdout_logging() -> None:
    lg = logging.getLogger(_LOGGER_NAME)
    for h in list(lg.handlers):
        if h.get_name() == _HANDLER_NAME:
            lg.removeHandler(h)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


def configure_from_env() -> None:
    """
    Call once from application entrypoints or test sessions.
    Honors:
      - LEASEKIT_LOG_STDOUT=1 -> attach a stdout handler
      - LEASEKIT_LOG_LEVEL=DEBUG|INFO|... (default INFO)
      - LEASEKIT_LOG_PRETTY=1 -> human formatter instead of JSON
      - LEASEKIT_LOG_STACK=1 -> include stack traces in JSON output
    """
    level = os.getenv("LEASEKIT_LOG_LEVEL", "INFO")
    set_level(level)
    if _env_flag("LEASEKIT_LOG_STDOUT"):
        enable_stdout_logging(
            level=level,
            json_output=True,
            pretty=_env_flag("LEASEKIT_LOG_PRETTY"),
            include_stack=_env_flag("LEASEKIT_LOG_STACK"),
        )
    else:
        disable_stdout_logging()
