"""Tests for the deterministic vector region build."""
import logging

import numpy as np
import pytest

from stitchvec.boundary_extraction import classify_loops, trace_component_loops
from stitchvec.components import analyze_components
from stitchvec.pattern_assembler import generate_pattern
from stitchvec.vector_regions import (
    TIMING_ENV_VAR,
    build_label_map,
    build_vector_regions,
    color_id,
    color_key,
)
from stitchvec.types import (
    DegenerateDimensionsError,
    FallbackReason,
    PatternResult,
    ProcessingConfig,
    RegionConfig,
    RegionPreset,
)


def assert_paths_closed(result):
    for region in result.regions:
        assert region.path_svg.startswith("M") and region.path_svg.endswith("Z")
        for hole in region.holes_svg:
            assert hole.startswith("M") and hole.endswith("Z")
    for region in result.contract.regions:
        assert region.svg_path.startswith("M") and region.svg_path.endswith("Z")


def assert_colors_in_legend(result):
    legend_ids = {entry.catalog_color_id for entry in result.contract.legend}
    for region in result.regions:
        assert region.catalog_color_id in legend_ids


class TestColorKeys:
    """Test color key normalization."""

    def test_keys(self):
        assert color_key(" 310 ", "#000000") == "310|#000000"
        assert color_key("raw-1", "abcdef") == "RAW-1|#ABCDEF"
        assert color_id("b5200", "#ffffff") == "B5200:#FFFFFF"

    def test_label_map_sorted_keys_and_fabric(self, make_pattern):
        pattern = make_pattern([["444", "310", None]], {"444": "#FFD600", "310": "#000000"})
        labels, palette = build_label_map(pattern)

        assert [meta.code for meta in palette] == ["310", "444"]
        assert labels.tolist() == [[1, 0, -1]]


class TestBuildVectorRegions:
    """Test region consolidation, tracing and the contract view."""

    def test_two_color_strip(self):
        image = np.array([[[255, 0, 0], [255, 0, 0], [0, 255, 0], [0, 255, 0]]], dtype=np.uint8)
        pattern = generate_pattern(image, ProcessingConfig(color_count=2, min_region_size=1))

        result = build_vector_regions(pattern, RegionConfig(2, 1))

        assert result.actual_region_count == 2
        assert result.fallback_reason is None
        assert len({r.catalog_color_id for r in result.regions}) == 2
        assert_paths_closed(result)
        assert_colors_in_legend(result)

        labels, _ = build_label_map(pattern)
        analysis = analyze_components(labels)
        for component in analysis.components:
            loops = trace_component_loops(analysis.component_grid, component.id)
            assert len(loops) == 1
            assert len(set((p.x, p.y) for p in loops[0])) == 4

    def test_checkerboard_reports_infeasible_target(self, checkerboard_image):
        pattern = generate_pattern(checkerboard_image, ProcessingConfig(color_count=2, min_region_size=1))

        result = build_vector_regions(pattern, RegionConfig(10, 1))

        assert result.actual_region_count == 9
        assert result.fallback_reason == FallbackReason.TARGET_EXCEEDS_FEASIBLE
        assert sorted(entry.area for entry in result.contract.legend) == [4, 5]

    def test_donut_hole(self, donut_pattern):
        result = build_vector_regions(donut_pattern, RegionConfig(3, 1))

        assert result.actual_region_count == 3
        by_code = {region.color.code: region for region in result.regions}
        assert len(by_code["444"].holes_svg) == 1
        assert len(by_code["321"].holes_svg) == 0
        assert_paths_closed(result)

        labels, palette = build_label_map(donut_pattern)
        analysis = analyze_components(labels)
        yellow_label = [meta.code for meta in palette].index("444")
        yellow = next(c for c in analysis.components if c.label == yellow_label)
        outlines = classify_loops(trace_component_loops(analysis.component_grid, yellow.id))
        outer = next(o for o in outlines if not o.is_hole)
        hole = next(o for o in outlines if o.is_hole)
        assert outer.signed_area * hole.signed_area < 0
        assert abs(outer.signed_area) > abs(hole.signed_area)

    def test_single_color_round_trip(self, make_pattern):
        pattern = make_pattern([["310"] * 6 for _ in range(4)], {"310": "#000000"})

        result = build_vector_regions(pattern, RegionConfig(1, 1))

        assert result.actual_region_count == 1
        assert result.fallback_reason is None
        region = result.regions[0]
        assert region.area == 24
        assert region.holes_svg == []
        assert (region.bbox.x, region.bbox.y, region.bbox.w, region.bbox.h) == (0.0, 0.0, 6.0, 4.0)
        assert (region.centroid_x, region.centroid_y) == (3.0, 2.0)
        assert [(e.area, e.region_count) for e in result.contract.legend] == [(24, 1)]

        labels, _ = build_label_map(pattern)
        analysis = analyze_components(labels)
        loops = trace_component_loops(analysis.component_grid, 0)
        assert len(loops) == 1
        assert len(loops[0]) == 5

    def test_region_ids_and_order(self, donut_pattern):
        result = build_vector_regions(donut_pattern, RegionConfig(3, 1))

        assert [r.region_id for r in result.regions] == ["r_1", "r_2", "r_3"]
        # Sorted by color key: 310 < 321 < 444
        assert [r.color.code for r in result.regions] == ["310", "321", "444"]
        assert [c.region_id for c in result.contract.regions] == ["r_1", "r_2", "r_3"]

    def test_merging_reduces_regions(self, donut_pattern):
        result = build_vector_regions(donut_pattern, RegionConfig(1, 1))

        assert result.actual_region_count == 1
        assert result.regions[0].area == 25

    def test_contract_mirrors_regions(self, donut_pattern):
        result = build_vector_regions(donut_pattern, RegionConfig(3, 1), RegionPreset.HIGH_DETAIL)

        assert result.preset == RegionPreset.HIGH_DETAIL
        assert result.contract.preset == RegionPreset.HIGH_DETAIL
        assert result.contract.actual_region_count == 3
        for region, contract in zip(result.regions, result.contract.regions):
            assert contract.svg_path == region.path_svg
            assert contract.holes_svg_paths == region.holes_svg
            assert contract.catalog_color_id == region.catalog_color_id

    def test_all_fabric_has_no_stitches(self, make_pattern):
        pattern = make_pattern([[None, None]], {})

        result = build_vector_regions(pattern)

        assert result.regions == []
        assert result.fallback_reason == FallbackReason.NO_STITCHES

    def test_zero_dimensions_rejected(self):
        with pytest.raises(DegenerateDimensionsError):
            build_vector_regions(PatternResult(width=0, height=3))

    def test_deterministic(self, donut_pattern):
        first = build_vector_regions(donut_pattern, RegionConfig(2, 2))
        second = build_vector_regions(donut_pattern, RegionConfig(2, 2))

        assert first.regions == second.regions
        assert first.contract == second.contract

    def test_timing_logged_when_enabled(self, donut_pattern, monkeypatch, caplog):
        monkeypatch.setenv(TIMING_ENV_VAR, "1")

        with caplog.at_level(logging.DEBUG, logger="stitchvec.vector_regions"):
            build_vector_regions(donut_pattern, RegionConfig(3, 1))

        assert any("Vector region timing" in record.message for record in caplog.records)
