"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that processing code depends on.
"""

from typing import Literal, Optional
from pydantic import Field, ConfigDict, field_validator
from holoarchive.schemas.base import HoloBaseModel
from holoarchive.schemas.param import check_strictly_increasing


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalDecoderConfig(HoloBaseModel):
    """Runtime decoder configuration."""
    brightness_sample_bytes: int = Field(ge=1)


class InternalScreeningConfig(HoloBaseModel):
    """Runtime screening configuration."""
    enabled: bool
    min_brightness: float
    max_brightness: float
    brightness_tolerance: float
    reference_threshold: float
    padding_seconds: int
    start_sfm: float
    stop_sfm: float


class InternalBinningConfig(HoloBaseModel):
    """Runtime binning configuration."""
    bin_edges: list[float]

    @field_validator("bin_edges")
    @classmethod
    def edges_strictly_increasing(cls, v):
        return check_strictly_increasing(v)


class InternalSampleVolumeConfig(HoloBaseModel):
    """Runtime sample volume (meters)."""
    xmin: float
    xmax: float
    ymin: float
    ymax: float
    zmin: float
    zmax: float
    rejected_m3: float

    @property
    def box_m3(self) -> float:
        return (self.xmax - self.xmin) * (self.ymax - self.ymin) * (self.zmax - self.zmin)

    @property
    def total_m3(self) -> float:
        """Effective per-hologram sample volume: box minus rejected volume."""
        return self.box_m3 - self.rejected_m3


class InternalArchiveConfig(HoloBaseModel):
    """Runtime archive configuration.

    ruleset is required here: an archive always records which acceptance
    policy produced the `accepted` flags.
    """
    probe_name: str
    source: str
    prefix: str
    ruleset: int = Field(ge=1)
    round_ruleset: int = Field(ge=0)
    time_offset_seconds: float
    compression_level: int = Field(ge=0, le=9)

    @property
    def round_enabled(self) -> bool:
        return self.round_ruleset > 0


class InternalAircraftConfig(HoloBaseModel):
    """Runtime aircraft configuration."""
    ncfile: Optional[str]
    reference_variable: Optional[str]


class InternalExportConfig(HoloBaseModel):
    """Runtime PNG export configuration."""
    write_frames: bool
    frame_prefix: str


class InternalWorkersConfig(HoloBaseModel):
    """Runtime worker configuration."""
    n_workers: int
    max_queue_size: int


class InternalLoggingConfig(HoloBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(HoloBaseModel):
    """Authoritative runtime configuration.

    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.edges = config.binning.bin_edges  # NOT .get()

    All validation happens during config resolution, not in runtime code.
    """

    base_dir: Optional[str] = None
    decoder: InternalDecoderConfig
    screening: InternalScreeningConfig
    binning: InternalBinningConfig
    sample_volume: InternalSampleVolumeConfig
    archive: InternalArchiveConfig
    aircraft: InternalAircraftConfig
    export: InternalExportConfig
    workers: InternalWorkersConfig
    logging: InternalLoggingConfig

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
