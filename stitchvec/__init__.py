"""Cross-stitch pattern generation and vector region package."""
from stitchvec.types import (
    FallbackReason,
    LegendEntry,
    MagicWandParams,
    PatternError,
    PatternResult,
    ProcessingConfig,
    RefinementParams,
    RegionConfig,
    RegionData,
    RegionPreset,
    Stitch,
    VectorRegion,
)

__version__ = "0.1.0"

__all__ = [
    "FallbackReason",
    "LegendEntry",
    "MagicWandParams",
    "PatternError",
    "PatternResult",
    "ProcessingConfig",
    "RefinementParams",
    "RegionConfig",
    "RegionData",
    "RegionPreset",
    "Stitch",
    "VectorRegion",
]
