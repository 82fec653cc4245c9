"""
Scheme factory.

- create_interpolation_scheme() - Build a registered scheme from a scheme entry
- register_scheme() - Register a scheme class under a name
- available_schemes() - Registered scheme names
"""

from __future__ import annotations

from .scheme_factory import available_schemes, create_interpolation_scheme, register_scheme

__all__ = [
    "available_schemes",
    "create_interpolation_scheme",
    "register_scheme",
]
