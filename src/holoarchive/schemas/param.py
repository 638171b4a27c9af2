"""ParamConfig: Expert defaults for the holoarchive pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from holoarchive.schemas.base import HoloBaseModel


def default_bin_edges() -> list[float]:
    """Standard HOLODEC diameter bin edges in microns (61 bins)."""
    edges = list(range(10, 50, 2))
    edges += list(range(50, 100, 5))
    edges += list(range(100, 200, 10))
    edges += list(range(200, 500, 50))
    edges += list(range(500, 2001, 100))
    return [float(e) for e in edges]


def check_strictly_increasing(edges: list[float]) -> list[float]:
    """Shared validator body for bin edge lists."""
    if len(edges) < 2:
        raise ValueError("bin_edges needs at least two values")
    if any(b <= a for a, b in zip(edges[:-1], edges[1:])):
        raise ValueError("bin_edges must be strictly increasing")
    return edges


# =============================================================================
# Nested Configuration Models
# =============================================================================

class DecoderConfig(HoloBaseModel):
    """Sequence file decoding configuration."""
    brightness_sample_bytes: int = Field(
        3000, ge=1, description="Bytes sampled from mid-frame for the brightness statistic"
    )


class ScreeningConfig(HoloBaseModel):
    """Hologram pre-selection by brightness and aircraft cloud reference."""
    enabled: bool = True
    min_brightness: float = Field(50.0, description="Lower bound for frames entering the median")
    max_brightness: float = Field(200.0, description="Upper bound for frames entering the median")
    brightness_tolerance: float = Field(40.0, gt=0, description="Allowed distance from median brightness")
    reference_threshold: float = Field(0.001, ge=0, description="Cloud threshold on the reference variable")
    padding_seconds: int = Field(2, ge=0, description="Cloud mask padding either side, seconds")
    start_sfm: float = Field(0.0, description="Earliest accepted second from midnight")
    stop_sfm: float = Field(999999.0, description="Latest accepted second from midnight")

    @model_validator(mode="after")
    def check_brightness_window(self):
        if self.max_brightness <= self.min_brightness:
            raise ValueError("max_brightness must exceed min_brightness")
        return self


class BinningConfig(HoloBaseModel):
    """Diameter binning configuration."""
    bin_edges: list[float] = Field(default_factory=default_bin_edges)

    @field_validator("bin_edges")
    @classmethod
    def edges_strictly_increasing(cls, v):
        return check_strictly_increasing(v)


class SampleVolumeConfig(HoloBaseModel):
    """Per-hologram sample volume bounding box, in meters."""
    xmin: float = -0.00725
    xmax: float = 0.00725
    ymin: float = -0.0048
    ymax: float = 0.0048
    zmin: float = 0.014
    zmax: float = 0.158
    rejected_m3: float = Field(0.0, ge=0, description="Volume removed by rejection rules, m3")

    @model_validator(mode="after")
    def check_box(self):
        for lo, hi in (("xmin", "xmax"), ("ymin", "ymax"), ("zmin", "zmax")):
            if getattr(self, hi) <= getattr(self, lo):
                raise ValueError(f"{hi} must exceed {lo}")
        return self


class ArchiveConfig(HoloBaseModel):
    """Archive content and metadata configuration."""
    probe_name: str = "HOLODEC"
    source: str = "HoloSuite (reconstructions and particle metrics); holoarchive (particle analysis)"
    prefix: str = "hologram"
    ruleset: Optional[int] = Field(None, ge=1, description="Primary particle acceptance ruleset id")
    round_ruleset: int = Field(0, ge=0, description="Round-particle ruleset id, 0 disables round variables")
    time_offset_seconds: float = 0.0
    compression_level: int = Field(5, ge=0, le=9)


class AircraftConfig(HoloBaseModel):
    """Aircraft reference data configuration."""
    ncfile: Optional[str] = None
    reference_variable: Optional[str] = None


class ExportConfig(HoloBaseModel):
    """PNG frame export configuration."""
    write_frames: bool = False
    frame_prefix: str = "hologram"


class WorkersConfig(HoloBaseModel):
    """Worker thread configuration."""
    n_workers: int = Field(4, ge=1, le=64)
    max_queue_size: int = Field(100, ge=1)


class LoggingConfig(HoloBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(HoloBaseModel):
    """Complete expert configuration with all defaults.

    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    base_dir: Optional[str] = None
    decoder: DecoderConfig = Field(default_factory=DecoderConfig)
    screening: ScreeningConfig = Field(default_factory=ScreeningConfig)
    binning: BinningConfig = Field(default_factory=BinningConfig)
    sample_volume: SampleVolumeConfig = Field(default_factory=SampleVolumeConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    aircraft: AircraftConfig = Field(default_factory=AircraftConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
