"""Placement driver interfaces and the region model."""

from .client import KvClient, PdClient
from .region import Region, RegionVerId, RegionWithLeader

__all__ = [
    "KvClient",
    "PdClient",
    "Region",
    "RegionVerId",
    "RegionWithLeader",
]
