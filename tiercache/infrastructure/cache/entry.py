"""
Cache Entry Envelope

Every tier stores the same encoded envelope rather than the raw value, so the
authoritative ``expires_at`` travels with the bytes. A tier-native TTL can only
make an entry vanish earlier; it can never make one live longer.

Wire layout:
    [4-byte big-endian header length][orjson header][payload bytes]

    header = {"d": domain, "s": stored_at, "e": expires_at}

Author: System Architect
Date: 2025-12-10
"""

import struct
import time
from dataclasses import dataclass
from typing import Callable

import orjson

from tiercache.core.config.constants import NAMESPACE_SEPARATOR
from tiercache.core.exceptions import InvalidCacheKeyError

_HEADER_LEN = struct.Struct(">I")

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    One cached value with its lifetime.

    Invariant: ``expires_at >= stored_at``.
    """

    key: str
    value: bytes
    stored_at: float
    expires_at: float
    domain: str

    @classmethod
    def create(cls, domain: str, key: str, value: bytes, ttl: float, now: float) -> "CacheEntry":
        return cls(key=key, value=value, stored_at=now, expires_at=now + max(ttl, 0.0), domain=domain)

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def remaining_ttl(self, now: float) -> float:
        return max(self.expires_at - now, 0.0)

    def encode(self) -> bytes:
        header = orjson.dumps({"d": self.domain, "s": self.stored_at, "e": self.expires_at})
        return _HEADER_LEN.pack(len(header)) + header + self.value

    @classmethod
    def decode(cls, key: str, blob: bytes) -> "CacheEntry":
        """
        Parse an envelope read back from a tier.

        Raises:
            ValueError: If the blob is truncated or the header is not an envelope
        """
        if len(blob) < _HEADER_LEN.size:
            raise ValueError("cache envelope truncated")
        (header_len,) = _HEADER_LEN.unpack_from(blob)
        start = _HEADER_LEN.size
        end = start + header_len
        if end > len(blob):
            raise ValueError("cache envelope header truncated")
        try:
            header = orjson.loads(blob[start:end])
            return cls(
                key=key,
                value=bytes(blob[end:]),
                stored_at=float(header["s"]),
                expires_at=float(header["e"]),
                domain=header["d"],
            )
        except (orjson.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"invalid cache envelope header: {e}") from e


def validate_domain(domain: str) -> str:
    """
    Raises:
        InvalidCacheKeyError: If domain is empty or contains the separator
    """
    if not isinstance(domain, str) or not domain or NAMESPACE_SEPARATOR in domain:
        raise InvalidCacheKeyError(
            "Cache domain must be a non-empty string without ':'",
            details={"domain": domain},
        )
    return domain


def namespaced_key(domain: str, key: str) -> str:
    """
    Build the tier-level key ``domain:key``.

    Raises:
        InvalidCacheKeyError: If domain is invalid or key is empty
    """
    validate_domain(domain)
    if not isinstance(key, str) or not key:
        raise InvalidCacheKeyError("Cache key must be a non-empty string", details={"domain": domain})
    return f"{domain}{NAMESPACE_SEPARATOR}{key}"


def namespace_prefix(domain: str, prefix: str = "") -> str:
    """Tier-level prefix for every key of ``domain`` starting with ``prefix``."""
    validate_domain(domain)
    return f"{domain}{NAMESPACE_SEPARATOR}{prefix or ''}"


def system_clock() -> float:
    return time.time()
