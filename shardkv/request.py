"""
Command execution against region leaders.

A command is one typed request message sent to the leader of the region that
owns its key. Store responses are classified into routing errors
(``RegionError``, raised so callers re-route) and key-level failures
(``CommandError`` and ``KeyLockedError``).
"""
from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

from shardkv.config import ResolverConfig
from shardkv.exceptions import CommandError, KeyLockedError, LeaderNotFoundError, RegionError
from shardkv.kvproto import Context, Key, KeyErrorDetail
from shardkv.pd.client import PdClient
from shardkv.pd.region import RegionWithLeader
from shardkv.utils.logging import get_logger
from shardkv.utils.retry import retry

R = TypeVar("R")

logger = get_logger(__name__)

ROUTING_ERRORS = (RegionError, LeaderNotFoundError)


async def send(pd_client: PdClient, context: Context, message: Any) -> Any:
    """
    Dispatch ``message`` to the peer named by ``context``.

    Raises:
        RegionError: If the store rejected the routing of the message.
    """
    message.context = context
    logger.debug(
        "Dispatching %s to region %s on store %s",
        type(message).__name__,
        context.region_id,
        context.peer.store_id,
    )
    client = await pd_client.kv_client(context.peer.store_id)
    response = await client.dispatch(message)
    region_error = getattr(response, "region_error", None)
    if region_error is not None:
        raise RegionError(region_error.kind, context.region_id, region_error.message)
    return response


def check_key_error(error: Optional[KeyErrorDetail]) -> None:
    """Raise the exception matching a key-level error, if any."""
    if error is None:
        return
    if error.locked is not None:
        raise KeyLockedError(error.locked)
    if error.abort:
        raise CommandError(f"Transaction aborted: {error.abort}")
    if error.retryable:
        raise CommandError(f"Retryable key error: {error.retryable}")


class KvRequest(ABC, Generic[R]):
    """A command that can be executed through a placement driver client."""

    label = "kv_request"

    @abstractmethod
    async def execute(self, pd_client: PdClient) -> R:
        raise NotImplementedError


class KeyedRequest(KvRequest[R]):
    """
    A command routed by a single key.

    Each attempt looks the key up afresh, so a routing error or a leaderless
    region is retried with backoff against the new topology.
    """

    def __init__(self, key: Key, message: Any, config: Optional[ResolverConfig] = None):
        self.key = key
        self.message = message
        self.config = config or ResolverConfig()

    def prepare(self, region: RegionWithLeader) -> None:
        """Adjust the message for the region it is about to be sent to."""

    @abstractmethod
    def on_response(self, response: Any, region: RegionWithLeader) -> R:
        raise NotImplementedError

    async def execute(self, pd_client: PdClient) -> R:
        async def attempt() -> R:
            region = await pd_client.region_for_key(self.key)
            self.prepare(region)
            response = await send(pd_client, region.context(), self.message)
            return self.on_response(response, region)

        attempt.__name__ = self.label
        return await retry(*ROUTING_ERRORS, **self.config.retry_kwargs())(attempt)()


class ContextRequest(KvRequest[R]):
    """
    A command bound to a caller-supplied region context.

    It is sent exactly once; re-routing after a ``RegionError`` is up to the
    caller, which is the only one that knows what to look up again.
    """

    def __init__(self, context: Context, message: Any):
        self.context = context
        self.message = message

    @abstractmethod
    def on_response(self, response: Any) -> R:
        raise NotImplementedError

    async def execute(self, pd_client: PdClient) -> R:
        response = await send(pd_client, self.context, self.message)
        return self.on_response(response)
