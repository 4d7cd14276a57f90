"""
System Constants and Enumerations

This module defines constants and enumerations shared across the tiered cache.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for tier names and health states
- Stage identifiers keep log lines greppable

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Cache processing stages used as the ``stage`` field of log lines.

    Format: {PREFIX}.{SEQUENCE}_{DESCRIPTIVE_NAME}

    Examples:
        log_stage(logger, Stage.GET_TIER_HIT, "Remote tier hit", tier="remote")
    """

    INITIALIZATION = "TC.0_INITIALIZATION"

    # Lookup path
    GET = "TC.1_GET"
    GET_TIER_HIT = "TC.1.1_TIER_HIT"
    GET_TIER_EXPIRED = "TC.1.2_TIER_EXPIRED"
    GET_MISS = "TC.1.3_MISS"

    # Write path
    SET = "TC.2_SET"
    SET_TIER_FAILED = "TC.2.1_TIER_WRITE_FAILED"
    SET_TOTAL_FAILURE = "TC.2.2_TOTAL_WRITE_FAILURE"

    # Removal
    DELETE = "TC.3_DELETE"
    INVALIDATE = "TC.4_INVALIDATE_PATTERN"
    WARM = "TC.6_WARM"
    PURGE = "TC.7_PURGE_EXPIRED"

    # Background work
    WRITE_BACK = "WB_WRITE_BACK"
    HEALTH = "HM_HEALTH_MONITOR"
    METRICS = "M_METRICS_COLLECTION"

    # Tier internals
    TIER_ERROR = "T_TIER_ERROR"
    CLEANUP = "TC.9_CLEANUP"


# ============================================================================
# Tiers
# ============================================================================


class TierName(str, Enum):
    """
    Closed set of cache tier variants, in lookup priority order.

    MEMORY: in-process LRU, always healthy
    REMOTE: shared Redis, guarded by the health monitor
    CLIENT: local persisted store, only in a client execution context
    """

    MEMORY = "memory"
    REMOTE = "remote"
    CLIENT = "client"


TIER_PRIORITY: tuple[TierName, ...] = (TierName.MEMORY, TierName.REMOTE, TierName.CLIENT)


class HealthStatus(str, Enum):
    """Health status values reported by ``health_check``."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# ============================================================================
# Domains and TTL defaults
# ============================================================================

NAMESPACE_SEPARATOR = ":"

DOMAIN_SEARCH_RESULTS = "search-results"
DOMAIN_GENERATED_TEXT = "generated-text"
DOMAIN_EXTRACTED_PHRASES = "extracted-phrases"
DOMAIN_QA_PAIRS = "qa-pairs"

DEFAULT_DOMAIN_TTLS: dict[str, int] = {
    DOMAIN_SEARCH_RESULTS: 3600,  # 1 hour
    DOMAIN_GENERATED_TEXT: 86400,  # 24 hours
    DOMAIN_EXTRACTED_PHRASES: 43200,  # 12 hours
    DOMAIN_QA_PAIRS: 43200,  # 12 hours
}

DEFAULT_TTL_SECONDS = 3600
MEMORY_TTL_CAP_SECONDS = 1800

# ============================================================================
# HTTP
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
API_BASE_PATH = "/api/v1"

# ============================================================================
# Metrics
# ============================================================================

LATENCY_SAMPLE_WINDOW = 1000
RECENT_TRANSITIONS_KEPT = 20
