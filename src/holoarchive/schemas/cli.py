"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: output location, flight prefix, aircraft file, verbosity.
"""

from typing import Literal, Optional
from holoarchive.schemas.base import HoloBaseModel


class CLIConfig(HoloBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Usage
    -----
        cli_cfg = CLIConfig(
            base_dir="/scratch/holo_output",
            prefix="RF04",
            ncfile="SPICULErf04.nc",
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    base_dir: Optional[str] = None
    prefix: Optional[str] = None
    ncfile: Optional[str] = None
    ruleset: Optional[int] = None
    n_workers: Optional[int] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        archive_overrides = {}
        if self.prefix is not None:
            archive_overrides["prefix"] = self.prefix.upper()
        if self.ruleset is not None:
            archive_overrides["ruleset"] = self.ruleset
        if archive_overrides:
            overrides["archive"] = archive_overrides

        if self.ncfile is not None:
            overrides["aircraft"] = {"ncfile": self.ncfile}

        if self.n_workers is not None:
            overrides["workers"] = {"n_workers": self.n_workers}

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
