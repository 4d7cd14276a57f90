"""
Cache-Related Exceptions

Only CacheConnectionError (startup), CacheWriteError (every tier refused a
write) and InvalidCacheKeyError (caller bug) ever reach callers of the
coordinator. TierOperationError is raised by tiers and absorbed by the
coordinator.

Author: System Architect
Date: 2025-12-08
"""

from tiercache.core.exceptions.base import TierCacheError


class CacheError(TierCacheError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when a tier cannot be brought up at startup.

    Common causes:
    - Authentication failure (bad REDIS_PASSWORD)
    - Wrong database / ACL permissions
    - Client store path not writable
    """
    pass


class TierOperationError(CacheError):
    """
    Raised by a tier when a single operation fails transiently.

    Common causes:
    - Connection refused / reset
    - Server overloaded
    - Local storage I/O error
    """
    pass


class TierTimeoutError(TierOperationError):
    """Raised when a tier operation exceeds its deadline."""
    pass


class CacheWriteError(CacheError):
    """Raised when a set was refused or failed on every usable tier."""
    pass


class InvalidCacheKeyError(CacheError):
    """
    Raised when a domain or key cannot be namespaced safely.

    Common causes:
    - Empty domain or key
    - Domain containing the ':' separator
    """
    pass
