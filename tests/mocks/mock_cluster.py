"""
In-memory cluster for testing purposes.

``MockCluster`` plays both the placement driver and every store node. It keeps
MVCC data, locks and transaction outcomes, splits regions on demand, and can be
told to fail commands with routing or key errors. Every dispatched message is
recorded so tests can count round trips.
"""
import asyncio
import bisect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from shardkv.exceptions import OracleUnavailableError
from shardkv.kvproto import (
    BatchGetRequest,
    BatchGetResponse,
    CleanupRequest,
    CleanupResponse,
    Context,
    GetRequest,
    GetResponse,
    Key,
    KeyErrorDetail,
    KvPair,
    LockInfo,
    Peer,
    RegionEpoch,
    RegionErrorDetail,
    RegionErrorKind,
    ResolveLockRequest,
    ResolveLockResponse,
    ScanRequest,
    ScanResponse,
)
from shardkv.pd.client import PdClient
from shardkv.pd.region import Region, RegionWithLeader
from shardkv.timestamp import Timestamp

STORE_IDS = (1, 2, 3)

_RESPONSE_TYPES = {
    CleanupRequest: CleanupResponse,
    ResolveLockRequest: ResolveLockResponse,
    GetRequest: GetResponse,
    BatchGetRequest: BatchGetResponse,
    ScanRequest: ScanResponse,
}


@dataclass
class PendingLock:
    info: LockInfo
    value: bytes


class MockCluster(PdClient):
    """A single-process stand-in for a placement driver and its stores."""

    def __init__(self, split_keys: Tuple[Key, ...] = (), physical: int = 10_000_000):
        self.physical = physical
        self.logical = 0
        self._next_id = 1
        self.regions: List[RegionWithLeader] = []

        bounds = [b""] + sorted(split_keys) + [b""]
        for start_key, end_key in zip(bounds, bounds[1:]):
            self.regions.append(self._new_region(start_key, end_key, RegionEpoch(conf_ver=1, version=1)))

        self.data: Dict[Key, List[Tuple[int, bytes]]] = {}
        self.locks: Dict[Key, PendingLock] = {}
        self.txn_status: Dict[int, int] = {}

        self.messages: List[Any] = []
        self.resolved: List[Tuple[int, int, int]] = []
        self.lookups: List[Key] = []
        self.timestamp_requests = 0
        self.unavailable = False

        self._region_errors: Dict[Type, List[RegionErrorKind]] = {}
        self._key_errors: Dict[Type, List[KeyErrorDetail]] = {}
        self._leaderless: Dict[Key, int] = {}
        self._hooks: List[Tuple[Type, bool, Callable[[Any], None]]] = []

    # Placement driver

    async def get_timestamp(self) -> Timestamp:
        self.timestamp_requests += 1
        if self.unavailable:
            raise OracleUnavailableError("No PD leader available")
        self.logical += 1
        return Timestamp(self.physical, self.logical)

    async def region_for_key(self, key: Key) -> RegionWithLeader:
        self.lookups.append(key)
        if self.unavailable:
            raise OracleUnavailableError("No PD leader available")
        region = self.region_of(key)
        for prefix, remaining in list(self._leaderless.items()):
            if remaining > 0 and region.contains(prefix):
                self._leaderless[prefix] = remaining - 1
                return RegionWithLeader(region.region, None)
        return region

    async def kv_client(self, store_id: int) -> "MockCluster":
        return self

    # Store

    async def dispatch(self, message: Any) -> Any:
        self.messages.append(message)
        self._run_hooks(type(message), after=False, message=message)

        response_type = _RESPONSE_TYPES[type(message)]
        queued = self._region_errors.get(type(message))
        if queued:
            return response_type(region_error=RegionErrorDetail(queued.pop(0), "injected"))

        region_error = self._check_context(message)
        if region_error is not None:
            return response_type(region_error=region_error)

        key_errors = self._key_errors.get(type(message))
        if key_errors:
            error = key_errors.pop(0)
            if response_type in (BatchGetResponse, ScanResponse):
                return response_type(pairs=[KvPair(key=b"", error=error)])
            return response_type(error=error)

        handler = getattr(self, f"_handle_{type(message).__name__}")
        response = handler(message)
        self._run_hooks(type(message), after=True, message=message)
        return response

    def _check_context(self, message: Any) -> Optional[RegionErrorDetail]:
        context: Context = message.context
        current = next((r for r in self.regions if r.id == context.region_id), None)
        if current is None:
            return RegionErrorDetail(RegionErrorKind.REGION_NOT_FOUND)
        if current.region.region_epoch != context.region_epoch:
            return RegionErrorDetail(RegionErrorKind.EPOCH_NOT_MATCH)
        if current.leader != context.peer:
            return RegionErrorDetail(RegionErrorKind.NOT_LEADER)
        for key in self._keys_of(message):
            if not current.contains(key):
                return RegionErrorDetail(RegionErrorKind.KEY_NOT_IN_REGION)
        return None

    @staticmethod
    def _keys_of(message: Any) -> List[Key]:
        if isinstance(message, (CleanupRequest, GetRequest)):
            return [message.key]
        if isinstance(message, BatchGetRequest):
            return list(message.keys)
        if isinstance(message, ScanRequest):
            return [message.start_key]
        return []

    def _handle_CleanupRequest(self, message: CleanupRequest) -> CleanupResponse:
        if message.start_version in self.txn_status:
            return CleanupResponse(commit_version=self.txn_status[message.start_version])
        pending = self.locks.get(message.key)
        if pending is not None and pending.info.lock_version == message.start_version:
            # A current_ts of 0 forces the rollback regardless of TTL.
            if message.current_ts:
                now = Timestamp.from_version(message.current_ts).physical
                started = Timestamp.from_version(pending.info.lock_version).physical
                if now - started < pending.info.lock_ttl:
                    return CleanupResponse(error=KeyErrorDetail(locked=LockInfo(**vars(pending.info))))
            del self.locks[message.key]
        self.txn_status[message.start_version] = 0
        return CleanupResponse(commit_version=0)

    def _handle_ResolveLockRequest(self, message: ResolveLockRequest) -> ResolveLockResponse:
        region = self._region_by_id(message.context.region_id)
        for key, pending in list(self.locks.items()):
            if pending.info.lock_version != message.start_version or not region.contains(key):
                continue
            if message.commit_version:
                self._write(key, message.commit_version, pending.value)
            del self.locks[key]
        self.resolved.append((region.id, message.start_version, message.commit_version))
        return ResolveLockResponse()

    def _handle_GetRequest(self, message: GetRequest) -> GetResponse:
        lock = self._blocking_lock(message.key, message.version)
        if lock is not None:
            return GetResponse(error=KeyErrorDetail(locked=lock))
        value = self._read(message.key, message.version)
        if value is None:
            return GetResponse(not_found=True)
        return GetResponse(value=value)

    def _handle_BatchGetRequest(self, message: BatchGetRequest) -> BatchGetResponse:
        pairs = []
        for key in message.keys:
            pair = self._pair(key, message.version)
            if pair is not None:
                pairs.append(pair)
        return BatchGetResponse(pairs=pairs)

    def _handle_ScanRequest(self, message: ScanRequest) -> ScanResponse:
        keys = sorted(set(self.data) | set(self.locks))
        start = bisect.bisect_left(keys, message.start_key)
        pairs = []
        for key in keys[start:]:
            if message.end_key and key >= message.end_key:
                break
            if len(pairs) >= message.limit:
                break
            pair = self._pair(key, message.version)
            if pair is not None:
                pairs.append(pair)
        return ScanResponse(pairs=pairs)

    def _pair(self, key: Key, version: int) -> Optional[KvPair]:
        lock = self._blocking_lock(key, version)
        if lock is not None:
            return KvPair(key=key, error=KeyErrorDetail(locked=lock))
        value = self._read(key, version)
        if value is None:
            return None
        return KvPair(key=key, value=value)

    def _blocking_lock(self, key: Key, version: int) -> Optional[LockInfo]:
        pending = self.locks.get(key)
        if pending is not None and pending.info.lock_version <= version:
            return LockInfo(**vars(pending.info))
        return None

    def _read(self, key: Key, version: int) -> Optional[bytes]:
        visible = [value for commit_ts, value in self.data.get(key, []) if commit_ts <= version]
        return visible[-1] if visible else None

    def _write(self, key: Key, commit_version: int, value: bytes) -> None:
        versions = self.data.setdefault(key, [])
        if (commit_version, value) not in versions:
            versions.append((commit_version, value))
            versions.sort()

    # Test helpers

    def version_at(self, age_ms: int, logical: int = 0) -> int:
        """Version number of a timestamp ``age_ms`` milliseconds before now."""
        return Timestamp(self.physical - age_ms, logical).version()

    def advance(self, ms: int) -> None:
        self.physical += ms

    def region_of(self, key: Key) -> RegionWithLeader:
        for region in self.regions:
            if region.contains(key):
                return region
        raise AssertionError(f"No region contains {key!r}")

    def put(self, key: Key, value: bytes, commit_version: int) -> None:
        self._write(key, commit_version, value)

    def prewrite(self, mutations: Dict[Key, bytes], primary: Key, start_version: int, ttl: int) -> List[LockInfo]:
        """Leave locks on every key as a transaction that never finished would."""
        infos = []
        for key, value in mutations.items():
            info = LockInfo(key=key, primary_lock=primary, lock_version=start_version, lock_ttl=ttl)
            self.locks[key] = PendingLock(info, value)
            infos.append(LockInfo(**vars(info)))
        return infos

    def commit_primary(self, start_version: int, commit_version: int) -> None:
        """Commit a transaction's primary and nothing else, as if it crashed right after."""
        self.txn_status[start_version] = commit_version
        for key, pending in list(self.locks.items()):
            if pending.info.lock_version == start_version and pending.info.primary_lock == key:
                self._write(key, commit_version, pending.value)
                del self.locks[key]

    def split(self, key: Key) -> None:
        """Split the region containing ``key`` at ``key``; both halves get a new epoch."""
        region = self.region_of(key)
        if region.start_key == key:
            return
        epoch = RegionEpoch(region.region.region_epoch.conf_ver, region.region.region_epoch.version + 1)
        left = RegionWithLeader(
            Region(region.id, region.start_key, key, epoch, list(region.region.peers)),
            region.leader,
        )
        right = self._new_region(key, region.end_key, epoch)
        index = self.regions.index(region)
        self.regions[index:index + 1] = [left, right]

    def transfer_leader(self, key: Key) -> None:
        """Move leadership of the region containing ``key`` to its next peer."""
        region = self.region_of(key)
        peers = region.region.peers
        leader = peers[(peers.index(region.leader) + 1) % len(peers)]
        self.regions[self.regions.index(region)] = RegionWithLeader(region.region, leader)

    def inject_region_error(self, message_type: Type, kind: RegionErrorKind = RegionErrorKind.NOT_LEADER, times: int = 1) -> None:
        self._region_errors.setdefault(message_type, []).extend([kind] * times)

    def inject_key_error(self, message_type: Type, error: KeyErrorDetail) -> None:
        self._key_errors.setdefault(message_type, []).append(error)

    def set_leaderless(self, key: Key, lookups: int = 1) -> None:
        """Report no leader for the region of ``key`` on the next ``lookups`` lookups."""
        self._leaderless[key] = lookups

    def on_dispatch(self, message_type: Type, callback: Callable[[Any], None], after: bool = False) -> None:
        """Run ``callback`` once, just before (or after) the next message of ``message_type``."""
        self._hooks.append((message_type, after, callback))

    def sent(self, message_type: Type) -> List[Any]:
        return [message for message in self.messages if isinstance(message, message_type)]

    def _run_hooks(self, message_type: Type, after: bool, message: Any) -> None:
        for hook in list(self._hooks):
            if hook[0] is message_type and hook[1] == after:
                self._hooks.remove(hook)
                hook[2](message)

    def _region_by_id(self, region_id: int) -> RegionWithLeader:
        return next(r for r in self.regions if r.id == region_id)

    def _new_region(self, start_key: Key, end_key: Key, epoch: RegionEpoch) -> RegionWithLeader:
        region_id = self._next_id
        self._next_id += 1
        peers = [Peer(id=region_id * 10 + store_id, store_id=store_id) for store_id in STORE_IDS]
        return RegionWithLeader(Region(region_id, start_key, end_key, epoch, peers), peers[0])


class SlowCluster(MockCluster):
    """A cluster whose region lookups take ``delay`` seconds each."""

    def __init__(self, delay: float, **kwargs: Any):
        super().__init__(**kwargs)
        self.delay = delay

    async def region_for_key(self, key: Key) -> RegionWithLeader:
        await asyncio.sleep(self.delay)
        return await super().region_for_key(key)
