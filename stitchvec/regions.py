"""Standalone pattern -> region extraction (integer outlines, no merging)."""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from stitchvec.boundary_extraction import trace_component_loops
from stitchvec.components import analyze_components
from stitchvec.types import LegendEntry, PatternRegion, PatternResult, Stitch, is_fabric_code

logger = logging.getLogger(__name__)


@dataclass
class RegionExtractionPayload:
    """Grid dimensions, stitches and legend; only code and hex are read."""
    width: int
    height: int
    stitches: List[Stitch] = field(default_factory=list)
    legend: List[LegendEntry] = field(default_factory=list)

    @classmethod
    def from_pattern(cls, pattern: PatternResult) -> "RegionExtractionPayload":
        return cls(
            width=pattern.width,
            height=pattern.height,
            stitches=list(pattern.stitches),
            legend=list(pattern.legend)
        )


def color_key(code: str, hex_str: str) -> str:
    return f"{code.strip().upper()}|{hex_str.strip().upper()}"


def _build_color_grid(payload: RegionExtractionPayload) -> Tuple[np.ndarray, List[str], List[str]]:
    """Palette indices per cell: legend colors first, then new stitch colors in order."""
    palette_by_key: Dict[str, int] = {}
    codes: List[str] = []
    hexes: List[str] = []

    def _index(code: str, hex_str: str) -> int:
        key = color_key(code, hex_str)
        if key not in palette_by_key:
            palette_by_key[key] = len(codes)
            codes.append(code)
            hexes.append(hex_str)
        return palette_by_key[key]

    for entry in payload.legend:
        if not is_fabric_code(entry.code):
            _index(entry.code, entry.hex)

    grid = np.full((payload.height, payload.width), -1, dtype=np.int64)
    for stitch in payload.stitches:
        if stitch.x < 0 or stitch.y < 0 or stitch.x >= payload.width or stitch.y >= payload.height:
            continue
        if is_fabric_code(stitch.code):
            continue
        grid[stitch.y, stitch.x] = _index(stitch.code, stitch.hex)

    return grid, codes, hexes


def pick_region_centroid(
    pixels: List[int],
    width: int,
    sum_x: float,
    sum_y: float,
    member_grid: np.ndarray,
    component_id: int
) -> Tuple[float, float]:
    """
    Mean cell center when that cell belongs to the region, otherwise the
    center of the member cell nearest to the mean.
    """
    area = max(len(pixels), 1)
    mean_x = sum_x / area
    mean_y = sum_y / area

    tx = int(np.floor(max(mean_x, 0.0)))
    ty = int(np.floor(max(mean_y, 0.0)))
    if ty < member_grid.shape[0] and tx < member_grid.shape[1] and member_grid[ty, tx] == component_id:
        return mean_x, mean_y

    idx = np.asarray(pixels, dtype=np.int64)
    cx = (idx % width) + 0.5
    cy = (idx // width) + 0.5
    best = int(np.argmin((cx - mean_x) ** 2 + (cy - mean_y) ** 2))
    return float(cx[best]), float(cy[best])


def extract_regions(payload: RegionExtractionPayload) -> List[PatternRegion]:
    """
    Split a stitch grid into four-connected same-color regions with outlines.

    Fabric stitches are excluded. Regions come out in row-major discovery
    order; each carries its collinear-collapsed integer loops sorted by
    (min_y, min_x, length).

    Args:
        payload: Width, height, stitches and legend

    Returns:
        List of PatternRegion
    """
    if payload.width <= 0 or payload.height <= 0:
        return []

    grid, codes, hexes = _build_color_grid(payload)
    analysis = analyze_components(grid)

    regions = []
    for component in analysis.components:
        bbox = (component.min_x, component.min_y, component.max_x, component.max_y)
        loops = trace_component_loops(
            analysis.component_grid, component.id, bbox, reduce_zigzags=False
        )
        if not loops:
            continue

        centroid_x, centroid_y = pick_region_centroid(
            component.pixels,
            payload.width,
            component.sum_x,
            component.sum_y,
            analysis.component_grid,
            component.id
        )
        code = codes[component.label]
        hex_str = hexes[component.label]
        regions.append(PatternRegion(
            id=component.id,
            color_index=component.label,
            color_key=color_key(code, hex_str),
            code=code,
            hex=hex_str,
            area=component.area,
            min_x=component.min_x,
            min_y=component.min_y,
            max_x=component.max_x,
            max_y=component.max_y,
            centroid_x=centroid_x,
            centroid_y=centroid_y,
            loops=loops
        ))

    logger.debug(f"Extracted {len(regions)} regions from {payload.width}x{payload.height} grid")
    return regions
