"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs with aliases for common naming patterns
(e.g., RULESET → ruleset, NCFILE → ncfile).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected, etc.
"""

from typing import Optional, Any
from pydantic import Field, field_validator
from holoarchive.schemas.base import HoloBaseModel


class UserScreeningConfig(HoloBaseModel):
    """User-facing screening config."""
    enabled: Optional[bool] = None
    min_brightness: Optional[float] = None
    max_brightness: Optional[float] = None
    brightness_tolerance: Optional[float] = None
    reference_threshold: Optional[float] = None
    padding_seconds: Optional[int] = None
    start_sfm: Optional[float] = None
    stop_sfm: Optional[float] = None


class UserArchiveConfig(HoloBaseModel):
    """User-facing archive config."""
    probe_name: Optional[str] = None
    source: Optional[str] = None
    prefix: Optional[str] = None
    ruleset: Optional[int] = None
    round_ruleset: Optional[int] = None
    time_offset_seconds: Optional[float] = None
    compression_level: Optional[int] = None


class UserConfig(HoloBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    Usage
    -----
        user_cfg = UserConfig(
            base_dir="/data/rf04",
            ruleset=8,
            ncfile="SPICULErf04.nc",
            prefix="RF04",
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Top-level operational settings
    base_dir: Optional[str] = Field(None, alias="BASE_DIR")
    prefix: Optional[str] = Field(None, alias="PREFIX")

    # Particle acceptance
    ruleset: Optional[int] = Field(None, alias="RULESET")
    round_ruleset: Optional[int] = Field(None, alias="ROUND_RULESET")
    time_offset_seconds: Optional[float] = Field(None, alias="TIME_OFFSET")

    # Aircraft reference
    ncfile: Optional[str] = Field(None, alias="NCFILE")
    reference_variable: Optional[str] = Field(None, alias="REFVAR")
    reference_threshold: Optional[float] = Field(None, alias="THRESH")

    # Binning and sample volume
    bin_edges: Optional[list[float]] = Field(None, alias="BIN_EDGES")
    sample_volume: Optional[dict[str, float]] = Field(None, alias="SAMPLE_VOLUME")

    # Frame export
    write_frames: Optional[bool] = Field(None, alias="WRITE_FRAMES")

    # Workers
    n_workers: Optional[int] = Field(None, alias="N_WORKERS")

    # Nested overrides (advanced users)
    screening: Optional[UserScreeningConfig] = None
    archive: Optional[UserArchiveConfig] = None
    decoder: Optional[dict[str, Any]] = None

    model_config = HoloBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("time_offset_seconds", "reference_threshold", mode="before")
    @classmethod
    def coerce_numeric_fields(cls, v):
        """Accept int or float for numeric fields."""
        if v is not None:
            return float(v)
        return v

    @field_validator("prefix", mode="before")
    @classmethod
    def normalize_prefix(cls, v):
        """Flight prefixes are upper-case (RF04, not rf04)."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        # Archive section
        archive = {}
        if self.prefix is not None:
            archive["prefix"] = self.prefix
        if self.ruleset is not None:
            archive["ruleset"] = self.ruleset
        if self.round_ruleset is not None:
            archive["round_ruleset"] = self.round_ruleset
        if self.time_offset_seconds is not None:
            archive["time_offset_seconds"] = self.time_offset_seconds
        if self.archive is not None:
            archive.update(self.archive.model_dump(exclude_none=True))
        if archive:
            overrides["archive"] = archive

        # Aircraft section
        aircraft = {}
        if self.ncfile is not None:
            aircraft["ncfile"] = self.ncfile
        if self.reference_variable is not None:
            aircraft["reference_variable"] = self.reference_variable
        if aircraft:
            overrides["aircraft"] = aircraft

        # Screening section
        screening = {}
        if self.reference_threshold is not None:
            screening["reference_threshold"] = self.reference_threshold
        if self.screening is not None:
            screening.update(self.screening.model_dump(exclude_none=True))
        if screening:
            overrides["screening"] = screening

        if self.bin_edges is not None:
            overrides["binning"] = {"bin_edges": list(self.bin_edges)}

        if self.sample_volume is not None:
            overrides["sample_volume"] = dict(self.sample_volume)

        if self.write_frames is not None:
            overrides["export"] = {"write_frames": self.write_frames}
            if self.prefix is not None:
                overrides["export"]["frame_prefix"] = self.prefix

        if self.n_workers is not None:
            overrides["workers"] = {"n_workers": self.n_workers}

        if self.decoder is not None:
            overrides["decoder"] = dict(self.decoder)

        return overrides
