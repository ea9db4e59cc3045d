from .inmemory_store import InMemLeaseStore, StoreUnavailable
from .util import dbg, get_record_by_event

__all__ = [
    "InMemLeaseStore",
    "StoreUnavailable",
    "dbg",
    "get_record_by_event",
]
