"""
Monitoring and metrics infrastructure for YieldSteward.

This package provides:
- Treasury metrics collection (counters, gauges, histograms)
- Structured logging with JSON output
- Request timing middleware for the status API

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("distributions_total")
    logger = get_logger(__name__)
    logger.info("Cycle finished", extra={"total": 9000})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging, timed

__all__ = [
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "LoggingContext",
    "setup_request_logging",
    "timed",
]
