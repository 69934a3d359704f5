"""
Transactional commands and their constructors.
"""
from typing import Dict, List, Optional, Tuple

from shardkv.config import ResolverConfig
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
    ResolveLockRequest,
    ResolveLockResponse,
    ScanRequest,
    ScanResponse,
)
from shardkv.pd.client import PdClient
from shardkv.pd.region import RegionVerId, RegionWithLeader
from shardkv.request import (
    ROUTING_ERRORS,
    ContextRequest,
    KeyedRequest,
    KvRequest,
    check_key_error,
    send,
)
from shardkv.utils.retry import retry


def check_read_error(error: Optional[KeyErrorDetail]) -> None:
    """Raise for key errors on reads, except locks, which the reader resolves."""
    if error is not None and error.locked is None:
        check_key_error(error)


class CleanupCommand(KeyedRequest[int]):
    """
    Determine the outcome of a transaction from its primary key.

    The store rolls the transaction back if it has not committed, so the
    answer is final either way: the commit version, or 0 for rolled back.
    """

    label = "cleanup"

    def on_response(self, response: CleanupResponse, region: RegionWithLeader) -> int:
        check_key_error(response.error)
        return response.commit_version


class ResolveLockCommand(ContextRequest[None]):
    """Apply a known outcome to every lock of one transaction inside one region."""

    label = "resolve_lock"

    def on_response(self, response: ResolveLockResponse) -> None:
        check_key_error(response.error)


class GetCommand(KeyedRequest[GetResponse]):
    """Point read. A lock blocking the read is left in the response."""

    label = "get"

    def on_response(self, response: GetResponse, region: RegionWithLeader) -> GetResponse:
        check_read_error(response.error)
        return response


class ScanCommand(KeyedRequest[Tuple[ScanResponse, RegionWithLeader]]):
    """
    Range read limited to the region owning ``start_key``.

    Returns the response together with the region it was served by so the
    caller can continue from the region's end key.
    """

    label = "scan"

    def __init__(self, message: ScanRequest, config: Optional[ResolverConfig] = None):
        super().__init__(message.start_key, message, config)
        self.end_key = message.end_key

    def prepare(self, region: RegionWithLeader) -> None:
        end_key = self.end_key
        if region.end_key and (not end_key or region.end_key < end_key):
            end_key = region.end_key
        self.message.end_key = end_key

    def on_response(self, response: ScanResponse, region: RegionWithLeader) -> Tuple[ScanResponse, RegionWithLeader]:
        for pair in response.pairs:
            check_read_error(pair.error)
        return response, region


class BatchGetCommand(KvRequest[BatchGetResponse]):
    """
    Multi-key read split by region.

    Keys are grouped by their current region on every attempt, so a topology
    change during the read regroups them instead of failing.
    """

    label = "batch_get"

    def __init__(self, keys: List[Key], version: int, config: Optional[ResolverConfig] = None):
        self.keys = list(keys)
        self.version = version
        self.config = config or ResolverConfig()

    async def execute(self, pd_client: PdClient) -> BatchGetResponse:
        @retry(*ROUTING_ERRORS, **self.config.retry_kwargs())
        async def batch_get() -> BatchGetResponse:
            groups: Dict[RegionVerId, Tuple[RegionWithLeader, List[Key]]] = {}
            for key in self.keys:
                region = await pd_client.region_for_key(key)
                groups.setdefault(region.ver_id(), (region, []))[1].append(key)

            merged = BatchGetResponse()
            for region, keys in groups.values():
                message = BatchGetRequest(keys=keys, version=self.version)
                response = await send(pd_client, region.context(), message)
                for pair in response.pairs:
                    check_read_error(pair.error)
                merged.pairs.extend(response.pairs)
            return merged

        return await batch_get()


def new_cleanup_request(
    key: Key,
    start_version: int,
    current_ts: int = 0,
    config: Optional[ResolverConfig] = None,
) -> CleanupCommand:
    message = CleanupRequest(key=key, start_version=start_version, current_ts=current_ts)
    return CleanupCommand(key, message, config)


def new_resolve_lock_request(context: Context, start_version: int, commit_version: int) -> ResolveLockCommand:
    message = ResolveLockRequest(start_version=start_version, commit_version=commit_version)
    return ResolveLockCommand(context, message)


def new_get_request(key: Key, version: int, config: Optional[ResolverConfig] = None) -> GetCommand:
    return GetCommand(key, GetRequest(key=key, version=version), config)


def new_batch_get_request(keys: List[Key], version: int, config: Optional[ResolverConfig] = None) -> BatchGetCommand:
    return BatchGetCommand(keys, version, config)


def new_scan_request(
    start_key: Key,
    end_key: Key,
    limit: int,
    version: int,
    config: Optional[ResolverConfig] = None,
) -> ScanCommand:
    message = ScanRequest(start_key=start_key, end_key=end_key, limit=limit, version=version)
    return ScanCommand(message, config)
