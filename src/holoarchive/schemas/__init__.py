"""Pydantic configuration schemas for holoarchive.

All configuration validation, coercion, and normalization happens at
schema validation time via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line operational overrides
"""

from holoarchive.schemas.resolve import resolve_config, deep_merge
from holoarchive.schemas.internal import InternalConfig
from holoarchive.schemas.param import ParamConfig, default_bin_edges
from holoarchive.schemas.user import UserConfig
from holoarchive.schemas.cli import CLIConfig

__all__ = [
    'resolve_config',
    'deep_merge',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
    'default_bin_edges',
]
