"""Core archive build execution logic.

Resolves configuration (Param < User < CLI), prepares the output
directories and drives ``ArchivePipeline``. Argument parsing is left to
the caller.
"""

import json
import logging
import importlib.util
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import pandas as pd

from holoarchive.particles.detections import HologramClassifier, batches_from_dataframe
from holoarchive.pipeline.orchestrator import ArchivePipeline
from holoarchive.schemas import resolve_config, CLIConfig, InternalConfig, ParamConfig, UserConfig
from holoarchive.setup_directories import setup_output_directories

__all__ = [
    'load_user_config_dict',
    'resolve_run_config',
    'run_archive_pipeline',
    'run_archive_from_table',
]

logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: Union[str, Path]) -> dict:
    """Load user config dict from Python file.

    Returns the raw dict before Pydantic validation.

    Parameters
    ----------
    config_path : str or Path
        Path to user config Python file containing a CONFIG dict.

    Returns
    -------
    dict
        Raw user configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    spec = importlib.util.spec_from_file_location("holoarchive_user_config", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def resolve_run_config(user_config_path: Union[str, Path],
                       cli_args: Optional[Dict[str, Any]] = None,
                       verbose: bool = False) -> InternalConfig:
    """Resolve ParamConfig < user file < CLI arguments into an InternalConfig."""
    user_cfg = UserConfig.model_validate(load_user_config_dict(user_config_path))

    cli_args = dict(cli_args or {})
    if verbose and "log_level" not in cli_args:
        cli_args["log_level"] = "DEBUG"
    cli_dict = {k: v for k, v in cli_args.items() if v is not None}
    cli_cfg = CLIConfig.model_validate(cli_dict) if cli_dict else CLIConfig()

    return resolve_config(ParamConfig(), user_cfg, cli_cfg)


def _print_summary(config: InternalConfig, user_config_path, verbose: bool):
    print(f"\n{'='*60}")
    print("HOLODEC Archive Builder")
    print('='*60)
    print(f"Config:  {user_config_path}")
    print(f"Flight:  {config.archive.prefix}")
    print(f"Ruleset: {config.archive.ruleset}")
    print(f"Aircraft: {config.aircraft.ncfile or '(none)'}")
    print(f"Output:  {config.base_dir}")
    print('='*60)

    if verbose:
        print("\nFull Internal Configuration:")
        print(json.dumps(config.model_dump(mode="json"), indent=2))
        print('='*60)


def run_archive_pipeline(
    user_config_path: Union[str, Path],
    container_files: Iterable,
    classifier: HologramClassifier,
    cli_args: Optional[Dict[str, Any]] = None,
    verbose: bool = False,
) -> Path:
    """Build an archive from sequence containers.

    Parameters
    ----------
    user_config_path : str or Path
        User config file (Python file with CONFIG dict).
    container_files : iterable of str or Path
        Sequence containers of one flight.
    classifier : HologramClassifier
        Reconstruction and classification engine.
    cli_args : dict, optional
        Overrides. Keys: base_dir, prefix, ncfile, ruleset, n_workers,
        log_level. All optional.
    verbose : bool, optional
        DEBUG logging and full resolved config printout.

    Returns
    -------
    Path
        The written archive.

    Examples
    --------
    ::

        run_archive_pipeline(
            "config/rf04.py",
            sorted(Path("/data/rf04").glob("*.seq")),
            classifier,
            cli_args={"ncfile": "SPICULErf04.nc"},
        )
    """
    config = resolve_run_config(user_config_path, cli_args, verbose)
    output_dirs = setup_output_directories(config.base_dir)
    _print_summary(config, user_config_path, verbose)

    pipeline = ArchivePipeline(config, output_dirs)
    try:
        return pipeline.run(container_files, classifier)
    finally:
        pipeline.close()


def run_archive_from_table(
    user_config_path: Union[str, Path],
    table: Union[str, Path, pd.DataFrame],
    cli_args: Optional[Dict[str, Any]] = None,
    units: str = "um",
    verbose: bool = False,
) -> Path:
    """Build an archive from a pre-classified detection table.

    ``table`` is a DataFrame or a CSV file in the layout read by
    ``batches_from_dataframe``. The configured time offset is applied to
    the table's capture times.
    """
    config = resolve_run_config(user_config_path, cli_args, verbose)
    output_dirs = setup_output_directories(config.base_dir)
    _print_summary(config, user_config_path, verbose)

    if not isinstance(table, pd.DataFrame):
        table = pd.read_csv(table)
    batches = batches_from_dataframe(table, time_offset=config.archive.time_offset_seconds,
                                     units=units)

    pipeline = ArchivePipeline(config, output_dirs)
    try:
        return pipeline.run_batches(batches)
    finally:
        pipeline.close()
