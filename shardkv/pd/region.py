from dataclasses import dataclass, field
from typing import List, Optional

from shardkv.exceptions import LeaderNotFoundError
from shardkv.kvproto import Context, Key, Peer, RegionEpoch


@dataclass(frozen=True)
class RegionVerId:
    """
    Identifies one incarnation of a region.

    Any split, merge or membership change produces a new id, so equality on
    this value tells whether cached knowledge about a region is still valid.
    """
    id: int
    conf_ver: int
    ver: int


@dataclass(frozen=True)
class Region:
    """A contiguous key range ``[start_key, end_key)``; an empty end key is unbounded."""
    id: int
    start_key: Key
    end_key: Key
    region_epoch: RegionEpoch
    peers: List[Peer] = field(default_factory=list)

    def contains(self, key: Key) -> bool:
        return self.start_key <= key and (not self.end_key or key < self.end_key)


@dataclass(frozen=True)
class RegionWithLeader:
    """A region together with the peer currently believed to lead it."""
    region: Region
    leader: Optional[Peer] = None

    @property
    def id(self) -> int:
        return self.region.id

    @property
    def start_key(self) -> Key:
        return self.region.start_key

    @property
    def end_key(self) -> Key:
        return self.region.end_key

    def contains(self, key: Key) -> bool:
        return self.region.contains(key)

    def ver_id(self) -> RegionVerId:
        epoch = self.region.region_epoch
        return RegionVerId(id=self.region.id, conf_ver=epoch.conf_ver, ver=epoch.version)

    def context(self) -> Context:
        """
        Build the request context for this region.

        Raises:
            LeaderNotFoundError: If no leader is known, e.g. during an election.
        """
        if self.leader is None:
            raise LeaderNotFoundError(self.region.id)
        return Context(
            region_id=self.region.id,
            region_epoch=self.region.region_epoch,
            peer=self.leader,
        )
