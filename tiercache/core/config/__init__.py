"""
Configuration Module

Centralized, type-safe configuration for the tiered cache.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Stage identifiers, tier names, domain TTL defaults

Usage:
------
```python
from tiercache.core.config import get_settings
from tiercache.core.config.constants import Stage, TierName

settings = get_settings()
ttl_table = settings.cache.CACHE_DOMAIN_TTLS
```
"""

from tiercache.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
