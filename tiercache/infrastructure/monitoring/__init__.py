"""
Monitoring Module

Remote tier health monitoring and cache metrics.
"""

from .health_monitor import HealthMonitor, TierHealth
from .metrics_collector import MetricsCollector

__all__ = ["HealthMonitor", "MetricsCollector", "TierHealth"]
