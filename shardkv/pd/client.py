"""
Interfaces to the placement driver (PD) and to store nodes.

The placement driver maps keys to the regions that currently own them and
hands out monotonically increasing timestamps. Store nodes execute commands
against region leaders. Both are shared, externally synchronized services;
callers hold cheap handles to them.
"""
from abc import ABC, abstractmethod
from typing import Any, Protocol

from shardkv.kvproto import Key
from shardkv.pd.region import RegionWithLeader
from shardkv.timestamp import Timestamp


class KvClient(Protocol):
    """Connection to a single store node."""

    async def dispatch(self, message: Any) -> Any:
        """Send one request message and return its response message."""
        ...


class PdClient(ABC):
    """Abstract placement driver client."""

    @abstractmethod
    async def get_timestamp(self) -> Timestamp:
        """
        Fetch a fresh timestamp.

        Raises:
            OracleUnavailableError: If no quorum or leader answers.
        """
        raise NotImplementedError

    @abstractmethod
    async def region_for_key(self, key: Key) -> RegionWithLeader:
        """
        Look up the region currently owning ``key``.

        Raises:
            OracleUnavailableError: If the lookup cannot be served.
        """
        raise NotImplementedError

    @abstractmethod
    async def kv_client(self, store_id: int) -> KvClient:
        """Get a client for the store with the given id."""
        raise NotImplementedError
