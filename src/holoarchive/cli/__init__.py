"""Programmatic entry points for archive builds.

Each function resolves configuration from a user config file, sets up the
output tree and runs the archive pipeline.
"""

from holoarchive.cli.run_archive import (
    load_user_config_dict,
    resolve_run_config,
    run_archive_pipeline,
    run_archive_from_table,
)

__all__ = [
    'load_user_config_dict',
    'resolve_run_config',
    'run_archive_pipeline',
    'run_archive_from_table',
]
