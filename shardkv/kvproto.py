"""
Wire messages exchanged with store nodes.

These dataclasses mirror the store's RPC definitions. Every request carries a
``Context`` naming the region incarnation and the peer it was routed to; every
response may carry a region error (routing problem) and key-level errors
(for example a lock left by another transaction).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

Key = bytes


def to_key(value) -> Key:
    """Coerce a user supplied key into bytes."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise TypeError(f"Key must be bytes or str, got {type(value).__name__}")


@dataclass(frozen=True)
class RegionEpoch:
    """Epoch of a region; bumped on membership change or split/merge."""
    conf_ver: int
    version: int


@dataclass(frozen=True)
class Peer:
    """One replica of a region, living on a store."""
    id: int
    store_id: int


@dataclass(frozen=True)
class Context:
    """Routing information attached to every request."""
    region_id: int
    region_epoch: RegionEpoch
    peer: Peer


@dataclass
class LockInfo:
    """A lock left on ``key`` by the transaction that started at ``lock_version``."""
    key: Key
    primary_lock: Key
    lock_version: int
    lock_ttl: int


class RegionErrorKind(str, Enum):
    """Kinds of routing errors a store can report."""
    NOT_LEADER = "not_leader"
    REGION_NOT_FOUND = "region_not_found"
    KEY_NOT_IN_REGION = "key_not_in_region"
    EPOCH_NOT_MATCH = "epoch_not_match"
    SERVER_IS_BUSY = "server_is_busy"
    STALE_COMMAND = "stale_command"
    STORE_NOT_MATCH = "store_not_match"


@dataclass
class RegionErrorDetail:
    kind: RegionErrorKind
    message: str = ""


@dataclass
class KeyErrorDetail:
    """A key-level error. At most one of the fields is normally set."""
    locked: Optional[LockInfo] = None
    retryable: str = ""
    abort: str = ""


@dataclass
class KvPair:
    key: Key
    value: bytes = b""
    error: Optional[KeyErrorDetail] = None


# Requests

@dataclass
class CleanupRequest:
    """Learn, and if needed force, the outcome of the transaction owning ``key``."""
    key: Key
    start_version: int
    current_ts: int = 0
    context: Optional[Context] = None


@dataclass
class ResolveLockRequest:
    """Commit or roll back every lock of one transaction inside one region."""
    start_version: int
    commit_version: int
    context: Optional[Context] = None


@dataclass
class GetRequest:
    key: Key
    version: int
    context: Optional[Context] = None


@dataclass
class BatchGetRequest:
    keys: List[Key]
    version: int
    context: Optional[Context] = None


@dataclass
class ScanRequest:
    start_key: Key
    end_key: Key
    limit: int
    version: int
    context: Optional[Context] = None


# Responses

@dataclass
class CleanupResponse:
    commit_version: int = 0
    error: Optional[KeyErrorDetail] = None
    region_error: Optional[RegionErrorDetail] = None


@dataclass
class ResolveLockResponse:
    error: Optional[KeyErrorDetail] = None
    region_error: Optional[RegionErrorDetail] = None


@dataclass
class GetResponse:
    value: bytes = b""
    not_found: bool = False
    error: Optional[KeyErrorDetail] = None
    region_error: Optional[RegionErrorDetail] = None


@dataclass
class BatchGetResponse:
    pairs: List[KvPair] = field(default_factory=list)
    region_error: Optional[RegionErrorDetail] = None


@dataclass
class ScanResponse:
    pairs: List[KvPair] = field(default_factory=list)
    region_error: Optional[RegionErrorDetail] = None


@dataclass
class PrewriteResponse:
    errors: List[KeyErrorDetail] = field(default_factory=list)
    region_error: Optional[RegionErrorDetail] = None


@dataclass
class CommitResponse:
    error: Optional[KeyErrorDetail] = None
    region_error: Optional[RegionErrorDetail] = None
