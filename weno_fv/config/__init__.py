"""
Scheme configuration for weno_fv.

Usage:
    >>> from weno_fv.config import WENOConfig, parse_scheme_entry
    >>> config = parse_scheme_entry("WENOUpwindFit phi 2 1")
    >>> config.polynomial_order
    2
"""

from __future__ import annotations

from .core import CacheConfig, LoggingConfig, StencilConfig, WENOConfig
from .io import load_weno_config, parse_scheme_entry, save_weno_config

__all__ = [
    "CacheConfig",
    "LoggingConfig",
    "StencilConfig",
    "WENOConfig",
    "load_weno_config",
    "parse_scheme_entry",
    "save_weno_config",
]
