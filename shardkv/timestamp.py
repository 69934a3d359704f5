"""
Hybrid logical timestamps handed out by the placement oracle.

A timestamp is packed into a single version number: the physical part (unix
milliseconds) in the high bits and an 18-bit logical counter in the low bits.
Transactions are identified by their start version.
"""
from dataclasses import dataclass

PHYSICAL_SHIFT_BITS = 18
LOGICAL_MASK = (1 << PHYSICAL_SHIFT_BITS) - 1


@dataclass(frozen=True, order=True)
class Timestamp:
    """A totally ordered oracle timestamp."""
    physical: int
    logical: int = 0

    @classmethod
    def from_version(cls, version: int) -> "Timestamp":
        """Unpack a version number into its physical and logical parts."""
        if version < 0:
            raise ValueError(f"Version must be non-negative, got {version}")
        return cls(physical=version >> PHYSICAL_SHIFT_BITS, logical=version & LOGICAL_MASK)

    def version(self) -> int:
        """Pack the timestamp into a version number."""
        return (self.physical << PHYSICAL_SHIFT_BITS) | (self.logical & LOGICAL_MASK)
