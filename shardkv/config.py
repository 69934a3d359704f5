"""
Configuration for lock resolution and command retries.
"""
import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from shardkv.exceptions import ConfigurationError

_ENV_PREFIX = "SHARDKV_RESOLVE_"
_ENV_FIELDS = {
    "MAX_RETRIES": "max_retries",
    "INITIAL_BACKOFF": "initial_backoff",
    "MAX_BACKOFF": "max_backoff",
    "BACKOFF_FACTOR": "backoff_factor",
    "JITTER": "jitter",
    "TIMEOUT": "resolve_timeout",
}


class ResolverConfig(BaseModel):
    """
    Backoff and deadline settings shared by the resolver, the snapshot reader
    and key-routed commands.

    Attributes:
        max_retries: Retries allowed after the first attempt before giving up.
        initial_backoff: First delay between attempts, in seconds.
        max_backoff: Upper bound on a single delay, in seconds.
        backoff_factor: Multiplier applied to the delay after each attempt.
        jitter: Relative random spread applied to each delay.
        resolve_timeout: Optional deadline for a whole ``resolve_locks`` call, in seconds.
    """
    max_retries: int = Field(20, ge=0)
    initial_backoff: float = Field(0.002, ge=0)
    max_backoff: float = Field(0.5, ge=0)
    backoff_factor: float = Field(2.0, ge=1)
    jitter: float = Field(0.1, ge=0, le=1)
    resolve_timeout: Optional[float] = Field(None, gt=0)

    def retry_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for :func:`shardkv.utils.retry.retry`."""
        return {
            "max_retries": self.max_retries,
            "initial_delay": self.initial_backoff,
            "max_delay": self.max_backoff,
            "backoff_factor": self.backoff_factor,
            "jitter": self.jitter,
        }

    @classmethod
    def from_environment(cls) -> "ResolverConfig":
        """
        Build a config from ``SHARDKV_RESOLVE_*`` environment variables.

        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a variable holds an invalid value.
        """
        values = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = os.getenv(_ENV_PREFIX + suffix)
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()
        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError("Invalid resolver configuration in environment", e)
