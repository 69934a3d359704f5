"""
shardkv - Lock resolution for a sharded transactional key-value store
=====================================================================

Client-side cleanup of locks left by stalled or crashed Percolator-style
transactions.
"""

__version__ = "0.1.0"

from .config import ResolverConfig
from .exceptions import (
    ShardKVError,
    ConfigurationError,
    OracleUnavailableError,
    RegionError,
    LeaderNotFoundError,
    CommandError,
    KeyLockedError,
    OperationError,
    RetryError,
)
from .kvproto import LockInfo
from .pd import PdClient, KvClient, Region, RegionVerId, RegionWithLeader
from .timestamp import Timestamp
from .transaction import Snapshot, is_expired, resolve_lock_with_retry, resolve_locks, take_locks

__all__ = [
    "ResolverConfig",
    "ShardKVError",
    "ConfigurationError",
    "OracleUnavailableError",
    "RegionError",
    "LeaderNotFoundError",
    "CommandError",
    "KeyLockedError",
    "OperationError",
    "RetryError",
    "LockInfo",
    "PdClient",
    "KvClient",
    "Region",
    "RegionVerId",
    "RegionWithLeader",
    "Timestamp",
    "Snapshot",
    "is_expired",
    "resolve_lock_with_retry",
    "resolve_locks",
    "take_locks",
]
