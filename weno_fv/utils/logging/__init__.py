"""
Logging utilities for weno_fv.

Usage:
    >>> from weno_fv.utils.logging import get_logger, configure_logging
    >>> logger = get_logger(__name__)
    >>> configure_logging(level="DEBUG")
    >>> logger.info("Building stencils...")
"""

from __future__ import annotations

from .logger import (
    LoggedOperation,
    WENOLogger,
    configure_development_logging,
    configure_logging,
    get_logger,
    log_cache_event,
    log_limiter_statistics,
    log_performance_metric,
    log_stencil_statistics,
)

__all__ = [
    "LoggedOperation",
    "WENOLogger",
    "configure_development_logging",
    "configure_logging",
    "get_logger",
    "log_cache_event",
    "log_limiter_statistics",
    "log_performance_metric",
    "log_stencil_statistics",
]
