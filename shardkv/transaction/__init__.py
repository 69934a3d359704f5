"""
Transactional lock handling for shardkv.

Locks found in store responses are drained with ``take_locks`` and handed to
``resolve_locks``, which settles each expired one according to the outcome
recorded on its transaction's primary key.
"""

from .lock import is_expired, resolve_lock_with_retry, resolve_locks, take_locks
from .snapshot import Snapshot

__all__ = [
    "is_expired",
    "resolve_lock_with_retry",
    "resolve_locks",
    "take_locks",
    "Snapshot",
]
