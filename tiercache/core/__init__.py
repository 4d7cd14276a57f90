"""
Core Module

Foundational components: configuration, logging, exceptions and the tier interface.
"""

from .exceptions import (
    CacheConnectionError,
    CacheError,
    CacheWriteError,
    ConfigurationError,
    InvalidCacheKeyError,
    TierCacheError,
    TierOperationError,
    TierTimeoutError,
)
from .logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
)

__all__ = [
    "CacheConnectionError",
    "CacheError",
    "CacheWriteError",
    "ConfigurationError",
    "InvalidCacheKeyError",
    "TierCacheError",
    "TierOperationError",
    "TierTimeoutError",
    "clear_request_id",
    "get_logger",
    "get_request_id",
    "log_stage",
    "set_request_id",
    "setup_logging",
]
