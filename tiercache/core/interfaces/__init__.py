from tiercache.core.interfaces.tier import CacheTier

__all__ = ["CacheTier"]
