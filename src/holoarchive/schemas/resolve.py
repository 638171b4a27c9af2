"""Configuration resolution and merging logic.

This module provides the single entrypoint for configuration resolution:
resolve_config(). It merges ParamConfig, UserConfig, and CLIConfig in
the correct precedence order and returns a validated InternalConfig.

Precedence (highest to lowest):
1. CLIConfig (command-line overrides)
2. UserConfig (user file)
3. ParamConfig (expert defaults)
"""

from typing import Union, Optional
from holoarchive.schemas.param import ParamConfig
from holoarchive.schemas.user import UserConfig
from holoarchive.schemas.cli import CLIConfig
from holoarchive.schemas.internal import InternalConfig


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Deep merge multiple dictionaries.

    Later dictionaries override earlier ones. Nested dictionaries are
    merged recursively; other values are replaced.

    Parameters
    ----------
    base : dict
        Base dictionary (lowest priority)
    *overrides : dict
        Override dictionaries (higher priority, left to right)

    Returns
    -------
    dict
        Merged dictionary

    Examples
    --------
    >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
    >>> override = {"b": {"d": 4, "e": 5}, "f": 6}
    >>> deep_merge(base, override)
    {'a': 1, 'b': {'c': 2, 'd': 4, 'e': 5}, 'f': 6}
    """
    result = base.copy()

    for override in overrides:
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def _as_model(value, model_cls):
    if value is None or (isinstance(value, dict) and not value):
        return model_cls()
    if isinstance(value, model_cls):
        return value
    return model_cls.model_validate(value)


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Resolve final runtime configuration from param, user, and CLI configs.

    This is the SINGLE ENTRYPOINT for configuration resolution. It validates
    and merges configs in the correct precedence order, then returns an
    immutable InternalConfig for runtime use.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Expert configuration with complete defaults. Required.
    user_cfg : dict or UserConfig, optional
        User configuration with overrides.
    cli_cfg : dict or CLIConfig, optional
        Command-line overrides.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration

    Raises
    ------
    ValidationError
        If any config fails Pydantic validation, including a missing
        ruleset after all layers are merged.

    Examples
    --------
    >>> from holoarchive.schemas import resolve_config, ParamConfig, UserConfig
    >>> config = resolve_config(ParamConfig(), UserConfig(RULESET=8, PREFIX="rf04"))
    >>> config.archive.ruleset
    8
    >>> config.archive.prefix
    'RF04'
    """
    param = _as_model(param_cfg, ParamConfig)
    user = _as_model(user_cfg, UserConfig)
    cli = _as_model(cli_cfg, CLIConfig)

    param_dict = param.model_dump()
    merged = deep_merge(param_dict, user.to_internal_overrides(), cli.to_internal_overrides())

    # Frame names carry the flight prefix unless export was configured explicitly
    export = merged.setdefault("export", {})
    if export.get("frame_prefix") == param.export.frame_prefix:
        export["frame_prefix"] = merged["archive"]["prefix"]

    return InternalConfig.model_validate(merged)
