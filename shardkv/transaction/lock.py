"""
Resolution of locks left behind by stalled or crashed transactions.

A transaction writes a lock on every key it touches, with one of them
designated primary. The primary alone decides whether the transaction
committed. When a reader or writer runs into a lock whose TTL has expired, it
asks the primary for the outcome (forcing a rollback if the transaction never
committed) and then drives the lock it found to that same outcome.

Every command issued here is idempotent at the store, so a batch that fails
halfway can simply be retried, and concurrent resolvers may overlap safely.
"""
import time
from collections import defaultdict
from functools import singledispatch
from typing import Any, Dict, Iterable, List, Optional, Set

from shardkv.config import ResolverConfig
from shardkv.kvproto import (
    BatchGetResponse,
    CleanupResponse,
    CommitResponse,
    GetResponse,
    Key,
    KeyErrorDetail,
    LockInfo,
    PrewriteResponse,
    ScanResponse,
)
from shardkv.pd.client import PdClient
from shardkv.pd.region import RegionVerId
from shardkv.request import ROUTING_ERRORS
from shardkv.timestamp import Timestamp
from shardkv.transaction.requests import new_cleanup_request, new_resolve_lock_request
from shardkv.utils.logging import get_correlation_id, get_logger, get_metrics_logger, with_correlation_id
from shardkv.utils.retry import retry
from shardkv.utils.timeout import with_timeout

logger = get_logger(__name__)


def is_expired(lock: LockInfo, now: Timestamp) -> bool:
    """
    Whether ``lock`` has outlived its TTL as of ``now``.

    Only the physical (millisecond) part of the clock is compared; the TTL is
    wall-clock time.
    """
    return now.physical - Timestamp.from_version(lock.lock_version).physical >= lock.lock_ttl


async def resolve_locks(
    locks: Iterable[LockInfo],
    pd_client: PdClient,
    config: Optional[ResolverConfig] = None,
) -> None:
    """
    Resolve every expired lock in ``locks``.

    Expiry is judged for the whole batch against one timestamp fetched at the
    start. Locks still within their TTL are left alone. Locks are resolved one
    after another in input order.

    Args:
        locks: Lock records collected from store responses.
        pd_client: Placement driver client used for timestamps, routing and dispatch.
        config: Backoff and deadline settings.

    Raises:
        OracleUnavailableError: If a timestamp or region lookup fails.
        CommandError: If a cleanup or resolve command fails for a reason other than routing.
        RetryError: If routing did not stabilize within the retry ceiling.
        TimeoutError: If ``config.resolve_timeout`` elapsed.
    """
    config = config or ResolverConfig()
    locks = list(locks)
    if not locks:
        return

    with with_correlation_id(get_correlation_id()):
        if config.resolve_timeout is None:
            await _resolve_locks(locks, pd_client, config)
        else:
            await with_timeout(
                config.resolve_timeout,
                f"Resolving {len(locks)} locks timed out after {config.resolve_timeout}s",
            ).run_async(_resolve_locks(locks, pd_client, config))


async def _resolve_locks(locks: List[LockInfo], pd_client: PdClient, config: ResolverConfig) -> None:
    metrics = get_metrics_logger()
    started = time.perf_counter()
    metrics.log_operation_start("resolve_locks", lock_count=len(locks))

    # Outcome of each transaction, keyed by start version: 0 is rolled back.
    commit_versions: Dict[int, int] = {}
    # Region incarnations already told the outcome of each transaction.
    clean_regions: Dict[int, Set[RegionVerId]] = defaultdict(set)
    expired: List[LockInfo] = []
    cleanup_count = 0
    resolve_count = 0
    success = False

    try:
        now = await pd_client.get_timestamp()
        expired = [lock for lock in locks if is_expired(lock, now)]
        if len(expired) < len(locks):
            logger.debug("Leaving %d live locks untouched", len(locks) - len(expired))

        for lock in expired:
            region_ver_id = (await pd_client.region_for_key(lock.key)).ver_id()
            if region_ver_id in clean_regions[lock.lock_version]:
                metrics.log_cache_hit("cleaned_region", lock.lock_version, region_id=region_ver_id.id)
                continue

            commit_version = commit_versions.get(lock.lock_version)
            if commit_version is None:
                metrics.log_cache_miss("commit_version", lock.lock_version)
                # No current_ts: the primary is rolled back even if its TTL was extended.
                commit_version = await new_cleanup_request(
                    lock.primary_lock, lock.lock_version, config=config
                ).execute(pd_client)
                commit_versions[lock.lock_version] = commit_version
                cleanup_count += 1
            else:
                metrics.log_cache_hit("commit_version", lock.lock_version)

            cleaned_region = await resolve_lock_with_retry(
                lock.key, lock.lock_version, commit_version, pd_client, config
            )
            clean_regions[lock.lock_version].add(cleaned_region)
            resolve_count += 1
            logger.debug(
                "Resolved lock of transaction %s on region %s as %s",
                lock.lock_version,
                cleaned_region.id,
                f"committed at {commit_version}" if commit_version else "rolled back",
            )
        success = True
    finally:
        metrics.log_operation_end(
            "resolve_locks",
            time.perf_counter() - started,
            success=success,
            lock_count=len(locks),
            expired_count=len(expired),
            cleanup_count=cleanup_count,
            resolve_count=resolve_count,
        )


async def resolve_lock_with_retry(
    key: Key,
    start_version: int,
    commit_version: int,
    pd_client: PdClient,
    config: Optional[ResolverConfig] = None,
) -> RegionVerId:
    """
    Apply a transaction's outcome to the region currently owning ``key``.

    The region is looked up again on every attempt; a leaderless region or a
    routing error from the store just means the topology moved, so the attempt
    is retried with backoff.

    Returns:
        The version id of the region incarnation the outcome was applied to.

    Raises:
        RetryError: If routing did not stabilize within ``config.max_retries``.
        CommandError: If the store rejected the command for another reason.
    """
    config = config or ResolverConfig()

    @retry(*ROUTING_ERRORS, **config.retry_kwargs())
    async def resolve_lock() -> RegionVerId:
        region = await pd_client.region_for_key(key)
        context = region.context()
        await new_resolve_lock_request(context, start_version, commit_version).execute(pd_client)
        return region.ver_id()

    return await resolve_lock()


@singledispatch
def take_locks(response: Any) -> List[LockInfo]:
    """
    Drain the lock records embedded in a store response.

    Drained records are removed from the response, so each lock is handed to
    the resolver once. Responses that cannot carry locks yield nothing.
    """
    return []


def _drain(holder: Any, attr: str = "error") -> List[LockInfo]:
    error: Optional[KeyErrorDetail] = getattr(holder, attr)
    if error is None or error.locked is None:
        return []
    lock = error.locked
    error.locked = None
    if not error.abort and not error.retryable:
        setattr(holder, attr, None)
    return [lock]


@take_locks.register(GetResponse)
@take_locks.register(CommitResponse)
@take_locks.register(CleanupResponse)
def _take_from_error(response) -> List[LockInfo]:
    return _drain(response)


@take_locks.register(BatchGetResponse)
@take_locks.register(ScanResponse)
def _take_from_pairs(response) -> List[LockInfo]:
    locks: List[LockInfo] = []
    for pair in response.pairs:
        locks.extend(_drain(pair))
    return locks


@take_locks.register(PrewriteResponse)
def _take_from_errors(response: PrewriteResponse) -> List[LockInfo]:
    locks = [error.locked for error in response.errors if error.locked is not None]
    response.errors = [error for error in response.errors if error.locked is None]
    return locks
