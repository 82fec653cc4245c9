"""
I/O for scheme configurations.

This module provides functions to load and save scheme configurations from/to
YAML files, and to parse the whitespace-separated scheme entries used in
dictionary-style case setups, e.g. ``"WENOUpwindFit phi 2 1"``.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import yaml
from pydantic import ValidationError

from weno_fv.utils.exceptions import ConfigurationError

if TYPE_CHECKING:
    from .core import WENOConfig


def load_weno_config(path: str | Path) -> WENOConfig:
    """
    Load scheme configuration from YAML file.

    Parameters
    ----------
    path : str | Path
        Path to YAML configuration file

    Returns
    -------
    WENOConfig
        Validated scheme configuration

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    yaml.YAMLError
        If YAML syntax is invalid
    ValueError
        If configuration is invalid

    YAML Format
    -----------
    scheme: WENOUpwindFit
    flux_name: phi
    polynomial_order: 2
    limiting_factor: 1.0
    stencil:
      max_extension_layers: 4
    cache:
      directory: constant/weno_geometry
    """
    from .core import WENOConfig

    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Invalid YAML syntax in {path}: {e}") from e

    if data is None:
        data = {}

    try:
        return WENOConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {path}:\n{e}") from e


def save_weno_config(config: WENOConfig, path: str | Path) -> None:
    """
    Save scheme configuration to YAML file.

    Parameters
    ----------
    config : WENOConfig
        Configuration to save
    path : str | Path
        Output file path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="json")

    with open(path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False, indent=2, allow_unicode=True)


def parse_scheme_entry(stream: str | TextIO, **overrides) -> WENOConfig:
    """
    Parse a whitespace-separated scheme entry.

    Two forms are accepted::

        WENOUpwindFit phi 2 1     # name, flux field name, order, limiting factor
        WENOUpwindFit 2 1         # name, order, limiting factor (flux passed explicitly)

    Parameters
    ----------
    stream : str | TextIO
        Entry text or a text stream positioned at the entry
    **overrides
        Extra ``WENOConfig`` fields (e.g. ``stencil``, ``cache``)

    Returns
    -------
    WENOConfig
        Validated configuration

    Raises
    ------
    ConfigurationError
        If the entry has the wrong number of tokens or malformed values
    """
    from .core import WENOConfig

    if isinstance(stream, str):
        stream = io.StringIO(stream)

    tokens = stream.read().split()

    if len(tokens) == 4:
        name, flux_name, order_token, lim_token = tokens
    elif len(tokens) == 3:
        name, order_token, lim_token = tokens
        flux_name = None
    else:
        raise ConfigurationError(
            parameter_name="scheme entry",
            provided_value=" ".join(tokens),
            component="parse_scheme_entry",
            reason="Expected '<scheme> [flux] <polynomialOrder> <limitingFactor>'",
        )

    try:
        polynomial_order = int(order_token)
    except ValueError:
        raise ConfigurationError(
            parameter_name="polynomial_order",
            provided_value=order_token,
            expected_type=int,
            component="parse_scheme_entry",
        ) from None

    try:
        limiting_factor = float(lim_token)
    except ValueError:
        raise ConfigurationError(
            parameter_name="limiting_factor",
            provided_value=lim_token,
            expected_type=float,
            component="parse_scheme_entry",
        ) from None

    try:
        return WENOConfig(
            scheme=name,
            flux_name=flux_name,
            polynomial_order=polynomial_order,
            limiting_factor=limiting_factor,
            **overrides,
        )
    except ValidationError as e:
        raise ConfigurationError(
            parameter_name="scheme entry",
            provided_value=" ".join(tokens),
            component="parse_scheme_entry",
            reason=str(e),
        ) from e
