"""shardkv utility modules."""

from .retry import retry
from .timeout import TimeoutContext, TimeoutError, with_timeout
from .logging import (
    get_logger,
    get_adapter,
    get_metrics_logger,
    initialize_logging,
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    with_correlation_id
)
from .logging_config import (
    LoggingPresets,
    configure_from_environment,
    get_logging_config
)

__all__ = [
    "retry",
    "TimeoutContext",
    "TimeoutError",
    "with_timeout",
    # Logging functions
    "get_logger",
    "get_adapter",
    "get_metrics_logger",
    "initialize_logging",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "with_correlation_id",
    # Logging configuration
    "LoggingPresets",
    "configure_from_environment",
    "get_logging_config"
]
