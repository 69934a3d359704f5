from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from shardkv.kvproto import LockInfo, RegionErrorKind


class ShardKVError(Exception):
    """Base class for all shardkv exceptions."""
    pass


class _WrappingError(ShardKVError):
    """Error that optionally carries the exception that caused it."""
    def __init__(self, message: str, original_exception: Exception = None):
        super().__init__(message)
        self.original_exception = original_exception
        self.message = message

    def __str__(self) -> str:
        if self.original_exception:
            return f"{self.message} (Original: {str(self.original_exception)})"
        return self.message


class ConfigurationError(_WrappingError):
    """Raised when there is an error in the configuration."""
    pass


class OracleUnavailableError(_WrappingError):
    """Raised when the placement oracle cannot serve a timestamp or region lookup."""
    pass


class RegionError(ShardKVError):
    """
    Raised when a command was routed with stale or wrong region information.

    Routing errors are always recoverable: the caller drops its routing
    information, looks the key up again and retries.
    """
    def __init__(self, kind: "RegionErrorKind", region_id: Optional[int] = None, message: str = ""):
        self.kind = kind
        self.region_id = region_id
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"Region error {self.kind.value}"
        if self.region_id is not None:
            text += f" on region {self.region_id}"
        if self.message:
            text += f": {self.message}"
        return text


class LeaderNotFoundError(ShardKVError):
    """Raised when a region currently has no known leader."""
    def __init__(self, region_id: int):
        super().__init__(f"Leader of region {region_id} is not found")
        self.region_id = region_id


class CommandError(_WrappingError):
    """Raised when a command fails for any reason other than routing."""
    pass


class KeyLockedError(CommandError):
    """Raised when a command ran into a lock held by another transaction."""
    def __init__(self, lock: "LockInfo"):
        super().__init__(
            f"Key {lock.key!r} is locked by transaction {lock.lock_version} "
            f"(primary {lock.primary_lock!r}, ttl {lock.lock_ttl}ms)"
        )
        self.lock = lock


class OperationError(_WrappingError):
    """Raised when a general operation fails."""
    pass


class RetryError(_WrappingError):
    """Raised when the maximum number of retries is exceeded."""
    pass
