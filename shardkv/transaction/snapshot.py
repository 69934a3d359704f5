from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from shardkv.config import ResolverConfig
from shardkv.exceptions import KeyLockedError
from shardkv.kvproto import Key, LockInfo, to_key
from shardkv.pd.client import PdClient
from shardkv.request import KvRequest
from shardkv.timestamp import Timestamp
from shardkv.transaction.lock import resolve_locks, take_locks
from shardkv.transaction.requests import new_batch_get_request, new_get_request, new_scan_request
from shardkv.utils.retry import retry

R = TypeVar("R")

DEFAULT_SCAN_LIMIT = 256


class Snapshot:
    """
    A read-only view of the store at a fixed timestamp.

    Reads that run into locks of other transactions hand them to the lock
    resolver and try again, backing off while the locks are still live.
    """

    def __init__(self, pd_client: PdClient, timestamp: Timestamp, config: Optional[ResolverConfig] = None):
        self.pd_client = pd_client
        self.timestamp = timestamp
        self.config = config or ResolverConfig()

    @classmethod
    async def latest(cls, pd_client: PdClient, config: Optional[ResolverConfig] = None) -> "Snapshot":
        """Open a snapshot at a fresh oracle timestamp."""
        return cls(pd_client, await pd_client.get_timestamp(), config)

    @property
    def version(self) -> int:
        return self.timestamp.version()

    async def get(self, key: Any) -> Optional[bytes]:
        """Get the value of ``key``, or None if it does not exist."""
        key = to_key(key)
        response = await self._read(lambda: new_get_request(key, self.version, self.config), take_locks)
        return None if response.not_found else response.value

    async def batch_get(self, keys: Iterable[Any]) -> Dict[Key, bytes]:
        """Get the values of ``keys``; keys that do not exist are omitted."""
        keys = [to_key(key) for key in keys]
        if not keys:
            return {}
        response = await self._read(lambda: new_batch_get_request(keys, self.version, self.config), take_locks)
        return {pair.key: pair.value for pair in response.pairs}

    async def scan(self, start_key: Any, end_key: Any = b"", limit: int = DEFAULT_SCAN_LIMIT) -> List[Tuple[Key, bytes]]:
        """
        Read up to ``limit`` pairs in ``[start_key, end_key)``, in key order.

        An empty ``end_key`` scans to the end of the keyspace.
        """
        if limit < 0:
            raise ValueError(f"Scan limit must be non-negative, got {limit}")
        cursor, end = to_key(start_key), to_key(end_key)
        pairs: List[Tuple[Key, bytes]] = []

        while len(pairs) < limit and (not end or cursor < end):
            remaining = limit - len(pairs)
            response, region = await self._read(
                lambda: new_scan_request(cursor, end, remaining, self.version, self.config),
                lambda result: take_locks(result[0]),
            )
            pairs.extend((pair.key, pair.value) for pair in response.pairs)
            if not region.end_key:
                break
            cursor = region.end_key

        return pairs

    async def _read(self, make_request: Callable[[], KvRequest[R]], locks_of: Callable[[R], List[LockInfo]]) -> R:
        @retry(KeyLockedError, **self.config.retry_kwargs())
        async def read() -> R:
            result = await make_request().execute(self.pd_client)
            locks = locks_of(result)
            if locks:
                await resolve_locks(locks, self.pd_client, self.config)
                raise KeyLockedError(locks[0])
            return result

        return await read()
