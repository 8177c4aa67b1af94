"""Deterministic pattern -> vector region build (merge, trace, smooth)."""
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from stitchvec.boundary_extraction import trace_component_loops
from stitchvec.boundary_smoother import polygon_abs_area, smooth_and_simplify_loop
from stitchvec.color_space import hex_to_rgb, normalize_hex, rgb_to_lab
from stitchvec.components import analyze_components
from stitchvec.region_merger import enforce_region_constraints
from stitchvec.svg_export import ensure_closed_svg_path, loop_to_svg_path
from stitchvec.types import (
    Component,
    ContractRegion,
    DegenerateDimensionsError,
    FallbackReason,
    PatternResult,
    RegionBounds,
    RegionColor,
    RegionConfig,
    RegionContract,
    RegionLegendEntry,
    RegionPreset,
    VectorRegion,
    VectorRegionResult,
    is_fabric_code,
)

logger = logging.getLogger(__name__)

TIMING_ENV_VAR = "STITCHVEC_DEBUG_TIMING"
CUSTOM_NAME = "Custom Color"


@dataclass
class ColorMeta:
    code: str
    name: str
    hex: str
    rgb: Tuple[int, int, int]
    lab: Tuple[float, float, float]


def timing_enabled() -> bool:
    return os.environ.get(TIMING_ENV_VAR, "").strip().lower() in ("1", "true", "yes")


def color_key(code: str, hex_str: str) -> str:
    return f"{code.strip().upper()}|{normalize_hex(hex_str)}"


def color_id(code: str, hex_str: str) -> str:
    """Public color identifier, `CODE:#HEX`."""
    return f"{code.strip().upper()}:{normalize_hex(hex_str)}"


def _split_color_key(key: str) -> Tuple[str, str]:
    code, _, hex_str = key.partition('|')
    return code, hex_str or "#000000"


def build_label_map(pattern: PatternResult) -> Tuple[np.ndarray, List[ColorMeta]]:
    """
    Label grid over the distinct (code, hex) pairs of the pattern.

    Labels index the keys in sorted order; fabric and out-of-range
    stitches stay -1. Names come from the pattern's color mappings.
    """
    width, height = pattern.width, pattern.height
    labels = np.full((height, width), -1, dtype=np.int64)

    names: Dict[str, str] = {}
    for mapping in pattern.color_mappings:
        names[mapping.thread.code.strip().upper()] = mapping.thread.name

    keys = sorted({
        color_key(stitch.code, stitch.hex)
        for stitch in pattern.stitches
        if not is_fabric_code(stitch.code)
    })

    palette = []
    label_by_key = {}
    for idx, key in enumerate(keys):
        code, hex_str = _split_color_key(key)
        try:
            rgb = hex_to_rgb(hex_str)
        except ValueError:
            rgb = (0, 0, 0)
        lab = rgb_to_lab(np.array(rgb, dtype=np.uint8).reshape(1, 3))[0]
        palette.append(ColorMeta(
            code=code,
            name=names.get(code, CUSTOM_NAME),
            hex=hex_str,
            rgb=rgb,
            lab=(float(lab[0]), float(lab[1]), float(lab[2]))
        ))
        label_by_key[key] = idx

    for stitch in pattern.stitches:
        if is_fabric_code(stitch.code):
            continue
        if not (0 <= stitch.x < width and 0 <= stitch.y < height):
            continue
        labels[stitch.y, stitch.x] = label_by_key[color_key(stitch.code, stitch.hex)]

    return labels, palette


def component_sort_key(component: Component):
    return (component.label, component.min_y, component.min_x, -component.area, component.id)


def build_color_legend(regions: List[VectorRegion]) -> List[RegionLegendEntry]:
    """Per-color area and region totals, sorted by color id."""
    by_color: Dict[str, RegionLegendEntry] = {}
    for region in regions:
        entry = by_color.get(region.catalog_color_id)
        if entry is None:
            entry = RegionLegendEntry(
                catalog_color_id=region.catalog_color_id,
                code=region.color.code or "CUSTOM",
                name=region.color.name or CUSTOM_NAME,
                hex=region.color.hex,
                area=0,
                region_count=0
            )
            by_color[region.catalog_color_id] = entry
        entry.area += region.area
        entry.region_count += 1

    return sorted(by_color.values(), key=lambda e: (e.catalog_color_id, -e.area))


def _empty_result(config: RegionConfig, preset: RegionPreset, reason: FallbackReason) -> VectorRegionResult:
    contract = RegionContract(
        regions=[],
        legend=[],
        fallback_reason=reason,
        preset=preset,
        target_region_count=config.target_region_count,
        actual_region_count=0
    )
    return VectorRegionResult(
        contract=contract,
        regions=[],
        target_region_count=config.target_region_count,
        actual_region_count=0,
        fallback_reason=reason,
        preset=preset
    )


def build_vector_regions(
    pattern: PatternResult,
    config: Optional[RegionConfig] = None,
    preset: RegionPreset = RegionPreset.STANDARD
) -> VectorRegionResult:
    """
    Consolidate a stitch pattern into smoothed vector regions.

    Merges components toward config.target_region_count and
    config.min_region_area, traces every surviving component, smooths
    each loop and keeps the largest loop as the outer path. Region ids
    are `r_<n>` in (label, min_y, min_x, -area, id) order.

    Args:
        pattern: Stitch pattern
        config: Region configuration (standard(12, 24) if omitted)
        preset: Preset tag recorded on the result

    Returns:
        VectorRegionResult with regions, color legend and contract view

    Raises:
        DegenerateDimensionsError: If the pattern has zero width or height
    """
    config = config or RegionConfig()
    debug_timing = timing_enabled()
    t_total = time.perf_counter()

    if pattern.width <= 0 or pattern.height <= 0:
        raise DegenerateDimensionsError("Pattern dimensions must be non-zero")

    t_label = time.perf_counter()
    labels, palette = build_label_map(pattern)
    label_ms = (time.perf_counter() - t_label) * 1000
    if not palette:
        return _empty_result(config, preset, FallbackReason.NO_STITCHES)

    t_merge = time.perf_counter()
    palette_lab = np.array([meta.lab for meta in palette], dtype=np.float64)
    outcome = enforce_region_constraints(labels, palette_lab, config)
    merge_ms = (time.perf_counter() - t_merge) * 1000

    t_contour = time.perf_counter()
    analysis = analyze_components(outcome.labels)
    components = sorted(analysis.components, key=component_sort_key)

    regions = []
    for idx, component in enumerate(components):
        meta = palette[component.label]
        bbox = (component.min_x, component.min_y, component.max_x, component.max_y)
        loops = trace_component_loops(analysis.component_grid, component.id, bbox)
        if not loops:
            continue

        float_loops = [smooth_and_simplify_loop(loop, config) for loop in loops]
        float_loops = [loop for loop in float_loops if len(loop) >= 4]
        if not float_loops:
            continue
        float_loops.sort(key=lambda loop: -polygon_abs_area(loop))

        outer, holes = float_loops[0], float_loops[1:]
        regions.append(VectorRegion(
            region_id=f"r_{idx + 1}",
            catalog_color_id=color_id(meta.code, meta.hex),
            color=RegionColor(rgb=meta.rgb, hex=meta.hex, code=meta.code, name=meta.name),
            area=component.area,
            path_svg=ensure_closed_svg_path(loop_to_svg_path(outer)),
            holes_svg=[ensure_closed_svg_path(loop_to_svg_path(hole)) for hole in holes],
            bbox=RegionBounds(
                x=float(component.min_x),
                y=float(component.min_y),
                w=float(component.max_x + 1 - component.min_x),
                h=float(component.max_y + 1 - component.min_y)
            ),
            centroid_x=component.sum_x / component.area,
            centroid_y=component.sum_y / component.area
        ))

    legend = build_color_legend(regions)
    actual = len(regions)
    fallback_reason = outcome.fallback_reason
    if fallback_reason is None and actual < config.target_region_count:
        fallback_reason = FallbackReason.TARGET_EXCEEDS_FEASIBLE

    contract = RegionContract(
        regions=[
            ContractRegion(
                region_id=region.region_id,
                catalog_color_id=region.catalog_color_id,
                svg_path=ensure_closed_svg_path(region.path_svg),
                holes_svg_paths=list(region.holes_svg)
            )
            for region in regions
        ],
        legend=legend,
        fallback_reason=fallback_reason,
        preset=preset,
        target_region_count=config.target_region_count,
        actual_region_count=actual
    )

    contour_ms = (time.perf_counter() - t_contour) * 1000
    if debug_timing:
        total_ms = (time.perf_counter() - t_total) * 1000
        logger.debug(
            f"Vector region timing preset={preset.value} target={config.target_region_count} "
            f"actual={actual} label_map={label_ms:.0f}ms merge={merge_ms:.0f}ms "
            f"contour={contour_ms:.0f}ms total={total_ms:.0f}ms"
        )
    logger.info(f"Built {actual} vector regions ({len(legend)} colors)")

    return VectorRegionResult(
        contract=contract,
        regions=regions,
        target_region_count=config.target_region_count,
        actual_region_count=actual,
        fallback_reason=fallback_reason,
        preset=preset
    )
