"""Core types for the pattern generation pipeline."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

FABRIC_CODE = "Fabric"
FABRIC_HEX = "#FFFFFF"


def is_fabric_code(code: str) -> bool:
    """True for the background (no thread) stitch code."""
    return code.strip().lower() == FABRIC_CODE.lower()


@dataclass(frozen=True)
class CatalogThread:
    """One floss in the thread catalog."""
    code: str
    name: str
    hex: str
    rgb: Tuple[int, int, int]
    lab: Tuple[float, float, float]


@dataclass(frozen=True)
class Stitch:
    """One cell of the stitch grid."""
    x: int
    y: int
    code: str
    marker: str
    hex: str

    @property
    def is_fabric(self) -> bool:
        return is_fabric_code(self.code)


@dataclass(frozen=True)
class ThreadMetadata:
    code: str
    name: str
    hex: str


@dataclass(frozen=True)
class ColorMapping:
    """Trace of one quantizer cluster snapped onto the catalog."""
    original_hex: str
    mapped_hex: str
    thread: ThreadMetadata


@dataclass
class LegendEntry:
    """Per-thread stitch statistics."""
    code: str
    name: str
    hex: str
    count: int
    coverage: float


@dataclass
class ProcessingConfig:
    """Configuration for pattern generation."""
    color_count: int = 16
    use_catalog_palette: bool = True
    smoothing_amount: float = 0.3
    simplify_amount: float = 0.2
    min_region_size: int = 4

    # Performance
    parallel_workers: int = -1  # -1 = auto

    def clamped(self) -> "ProcessingConfig":
        """Copy with every knob clamped to its accepted range."""
        return replace(
            self,
            color_count=min(max(int(self.color_count), 2), 64),
            smoothing_amount=min(max(float(self.smoothing_amount), 0.0), 1.0),
            simplify_amount=min(max(float(self.simplify_amount), 0.0), 1.0),
            min_region_size=max(int(self.min_region_size), 1),
        )


@dataclass
class PatternResult:
    """Stitch grid plus palette, legend and catalog trace."""
    width: int
    height: int
    stitches: List[Stitch] = field(default_factory=list)
    palette: List[str] = field(default_factory=list)
    catalog_palette: List[str] = field(default_factory=list)
    legend: List[LegendEntry] = field(default_factory=list)
    color_mappings: List[ColorMapping] = field(default_factory=list)
    total_stitches: int = 0
    processing_time_ms: int = 0


@dataclass
class Component:
    """Four-connected run of equal labels."""
    id: int
    label: int
    area: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int
    sum_x: float
    sum_y: float
    pixels: List[int] = field(default_factory=list)
    neighbors: List[Tuple[int, int]] = field(default_factory=list)  # (id, shared edges)


@dataclass(frozen=True, order=True)
class GridPoint:
    """Vertex on the pixel-corner lattice."""
    x: int
    y: int


@dataclass
class OutlineLoop:
    """Closed boundary loop; first point equals last."""
    points: List[GridPoint]
    signed_area: float = 0.0
    is_hole: bool = False


class RegionPreset(Enum):
    DRAFT = "draft"
    STANDARD = "standard"
    HIGH_DETAIL = "high_detail"


class FallbackReason(Enum):
    """Why the merger could not satisfy both target count and minimum area."""
    NO_STITCHES = "no_stitches"
    NO_CONNECTED_REGIONS = "no_connected_regions"
    TARGET_EXCEEDS_FEASIBLE = "target_exceeds_feasible"
    MERGE_CONVERGENCE_LIMIT = "merge_convergence_limit"
    MIN_AREA_CONFLICT = "min_area_conflict"


@dataclass
class RegionConfig:
    """Configuration for region merging and outline smoothing."""
    target_region_count: int = 12
    min_region_area: int = 24
    simplify_epsilon: float = 0.42
    smoothing_strength: float = 0.45
    smoothing_passes: int = 1
    max_merge_passes: int = 120

    @classmethod
    def draft(cls, target_region_count: int, min_region_area: int) -> "RegionConfig":
        """Stronger simplification for quick, bold regions."""
        return cls(target_region_count, min_region_area, 0.75, 0.25, 1, 96)

    @classmethod
    def standard(cls, target_region_count: int, min_region_area: int) -> "RegionConfig":
        return cls(target_region_count, min_region_area, 0.42, 0.45, 1, 120)

    @classmethod
    def high_detail(cls, target_region_count: int, min_region_area: int) -> "RegionConfig":
        """Keeps more contour detail."""
        return cls(target_region_count, min_region_area, 0.22, 0.55, 2, 160)

    @classmethod
    def from_preset(
        cls,
        preset: RegionPreset,
        target_region_count: int,
        min_region_area: int
    ) -> "RegionConfig":
        factory = {
            RegionPreset.DRAFT: cls.draft,
            RegionPreset.STANDARD: cls.standard,
            RegionPreset.HIGH_DETAIL: cls.high_detail,
        }[preset]
        return factory(target_region_count, min_region_area)


@dataclass
class RegionBounds:
    x: float
    y: float
    w: float
    h: float


@dataclass
class RegionColor:
    rgb: Tuple[int, int, int]
    hex: str
    code: Optional[str] = None
    name: Optional[str] = None


@dataclass
class VectorRegion:
    """Vectorized output region."""
    region_id: str
    catalog_color_id: str
    color: RegionColor
    area: int
    path_svg: str
    holes_svg: List[str] = field(default_factory=list)
    bbox: RegionBounds = field(default_factory=lambda: RegionBounds(0.0, 0.0, 0.0, 0.0))
    centroid_x: float = 0.0
    centroid_y: float = 0.0


@dataclass
class RegionLegendEntry:
    """Per-color totals over the vector regions."""
    catalog_color_id: str
    code: str
    name: str
    hex: str
    area: int
    region_count: int


@dataclass
class ContractRegion:
    region_id: str
    catalog_color_id: str
    svg_path: str
    holes_svg_paths: List[str] = field(default_factory=list)


@dataclass
class RegionContract:
    """Minimal, printable view of a vector region build."""
    regions: List[ContractRegion]
    legend: List[RegionLegendEntry]
    fallback_reason: Optional[FallbackReason]
    preset: RegionPreset
    target_region_count: int
    actual_region_count: int


@dataclass
class VectorRegionResult:
    contract: RegionContract
    regions: List[VectorRegion]
    target_region_count: int
    actual_region_count: int
    fallback_reason: Optional[FallbackReason]
    preset: RegionPreset


@dataclass
class PatternRegion:
    """Region produced by the standalone pattern-to-regions extraction."""
    id: int
    color_index: int
    color_key: str
    code: str
    hex: str
    area: int
    min_x: int
    min_y: int
    max_x: int
    max_y: int
    centroid_x: float
    centroid_y: float
    loops: List[List[GridPoint]] = field(default_factory=list)


@dataclass
class PerfStats:
    decode_ms: int = 0
    quantize_ms: int = 0
    contour_ms: int = 0
    total_ms: int = 0


@dataclass
class RegionData:
    """Response of the end-to-end image pipeline."""
    width: int
    height: int
    regions: List[VectorRegion]
    palette: List[str]
    perf: PerfStats
    cache_key: str
    fallback_reason: Optional[FallbackReason] = None


@dataclass
class MagicWandParams:
    seed_x: int
    seed_y: int
    tolerance: float
    edge_stop: float


@dataclass
class RefinementParams:
    min_island_area: int = 16
    hole_fill_area: int = 16
    smoothing_passes: int = 1


@dataclass(frozen=True)
class ManualEdit:
    """User override of a single stitch."""
    x: int
    y: int
    mode: str = "thread"  # "thread" or "fabric"
    code: Optional[str] = None
    marker: Optional[str] = None
    hex: Optional[str] = None


class PatternError(Exception):
    """Base exception for pattern generation errors."""
    pass


class DecodeError(PatternError):
    """Image bytes could not be decoded."""
    pass


class DegenerateDimensionsError(PatternError):
    """Image is smaller than the minimum supported size."""
    pass


class BufferSizeError(PatternError):
    """Raw pixel buffer length does not match the stated dimensions."""
    pass


class SelectionError(PatternError):
    pass


class SeedOutOfBoundsError(SelectionError):
    pass


class WorkspaceMissingError(SelectionError):
    pass


class CacheIOError(PatternError):
    """Pipeline cache file could not be read or written."""
    pass


class TraceAbortedError(PatternError):
    """Contour threading hit its safety bound."""
    pass


ColorKey = str
LabelLookup = Dict[ColorKey, int]
