"""
Exception Module

Structured exception hierarchy for the tiered cache.

Module Structure:
-----------------
- **base.py**: TierCacheError base class + ConfigurationError
- **cache.py**: Tier and coordinator exceptions

Usage:
------
```python
from tiercache.core.exceptions import CacheWriteError, TierOperationError
```

Author: System Architect
Date: 2025-12-08
"""

from tiercache.core.exceptions.base import ConfigurationError, TierCacheError
from tiercache.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheWriteError,
    InvalidCacheKeyError,
    TierOperationError,
    TierTimeoutError,
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
]
