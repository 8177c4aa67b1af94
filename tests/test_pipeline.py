"""Tests for the end-to-end pipeline and its disk cache."""
import logging

import numpy as np
import pytest

from stitchvec.disk_cache import (
    cache_path,
    read_cached,
    region_data_from_dict,
    region_data_to_dict,
    write_cached,
)
from stitchvec.pipeline import (
    build_cache_key,
    default_min_region_area,
    detail_settings,
    pipeline_pattern,
    process_image_pipeline,
    process_pattern,
    process_pattern_file,
)
from stitchvec.types import (
    BufferSizeError,
    CacheIOError,
    DecodeError,
    DegenerateDimensionsError,
    FallbackReason,
    ProcessingConfig,
    RegionPreset,
)


def speck_image():
    """12x12 red/blue halves with one green pixel inside the blue half."""
    image = np.zeros((12, 12, 3), dtype=np.uint8)
    image[:, :6] = (255, 0, 0)
    image[:, 6:] = (0, 0, 255)
    image[5, 8] = (0, 255, 0)
    return image


class TestDetailSettings:
    """Test the detail knob mapping."""

    @pytest.mark.parametrize("detail,min_size,preset", [
        (1.0, 1, RegionPreset.HIGH_DETAIL),
        (0.6, 2, RegionPreset.STANDARD),
        (0.5, 3, RegionPreset.STANDARD),
        (0.35, 3, RegionPreset.DRAFT),
        (0.0, 4, RegionPreset.DRAFT),
    ])
    def test_mapping(self, detail, min_size, preset):
        config, chosen = detail_settings(16, detail)

        assert config.min_region_size == min_size
        assert chosen == preset
        assert config.use_catalog_palette is False

    def test_clamping(self):
        config, preset = detail_settings(500, 7.0)

        assert config.color_count == 64
        assert preset == RegionPreset.HIGH_DETAIL
        assert detail_settings(1, -1.0)[0].color_count == 2

    def test_min_region_area(self):
        assert default_min_region_area(4, 4, 12) == 1
        assert default_min_region_area(40, 40, 12) == 24
        assert default_min_region_area(20, 12, 5) == 12


class TestCacheKey:
    """Test content-addressed cache keys."""

    def test_stable(self):
        assert build_cache_key(b"abc", 8, 0.5) == build_cache_key(b"abc", 8, 0.5)
        assert len(build_cache_key(b"abc", 8, 0.5)) == 64

    def test_every_input_changes_key(self):
        base = build_cache_key(b"abc", 8, 0.5, 12, None)

        variants = [
            build_cache_key(b"abd", 8, 0.5, 12, None),
            build_cache_key(b"abc", 9, 0.5, 12, None),
            build_cache_key(b"abc", 8, 0.6, 12, None),
            build_cache_key(b"abc", 8, 0.5, 13, None),
            build_cache_key(b"abc", 8, 0.5, 12, b"\x01\x00"),
            build_cache_key(b"abc", 8, 0.5, 12, None, min_region_area=5),
            build_cache_key(b"abc", 8, 0.5, 12, None, min_region_area=0),
            build_cache_key(b"abc", 8, 0.5, 12, None, preset=RegionPreset.DRAFT),
            build_cache_key(b"abc", 8, 0.5, 12, None, use_catalog_palette=True),
        ]

        assert base not in variants
        assert len(set(variants)) == len(variants)

    def test_array_and_bytes_masks_agree(self):
        mask = np.array([[1, 0], [0, 1]], dtype=np.uint8)

        assert build_cache_key(b"x", 4, 0.5, 12, mask) == build_cache_key(b"x", 4, 0.5, 12, mask.tobytes())


class TestProcessImagePipeline:
    """Test the full image -> regions run."""

    def test_quadrants(self, encode_png, quadrant_image):
        result = process_image_pipeline(encode_png(quadrant_image), 4, 0.5)

        assert (result.width, result.height) == (4, 4)
        assert len(result.regions) == 4
        assert len(set(result.palette)) == 4
        assert result.fallback_reason == FallbackReason.TARGET_EXCEEDS_FEASIBLE
        assert sum(region.area for region in result.regions) == 16
        for region in result.regions:
            assert region.color.hex in result.palette
            assert region.path_svg.startswith("M") and region.path_svg.endswith("Z")

    def test_repeat_runs_identical(self, encode_png, quadrant_image):
        data = encode_png(quadrant_image)

        first = process_image_pipeline(data, 4, 0.5)
        second = process_image_pipeline(data, 4, 0.5)

        assert first.regions == second.regions
        assert [r.region_id for r in first.regions] == ["r_1", "r_2", "r_3", "r_4"]
        assert [r.path_svg for r in first.regions] == [r.path_svg for r in second.regions]
        assert first.palette == second.palette
        assert first.cache_key == second.cache_key
        assert first.fallback_reason == second.fallback_reason

    def test_target_reached_by_merging(self, encode_png, quadrant_image):
        result = process_image_pipeline(encode_png(quadrant_image), 4, 0.5, target_region_count=2)

        assert len(result.regions) == 2
        assert result.fallback_reason is None
        assert sum(region.area for region in result.regions) == 16

    def test_masked_pixels_become_fabric(self, encode_png, quadrant_image):
        mask = np.ones((4, 4), dtype=np.uint8)
        mask[2:, 2:] = 0

        result = process_image_pipeline(encode_png(quadrant_image), 4, 0.5, mask=mask)

        assert len(result.regions) == 3
        assert len(result.palette) == 3
        assert sum(region.area for region in result.regions) == 12

    def test_mask_size_mismatch(self, encode_png, quadrant_image):
        with pytest.raises(BufferSizeError):
            process_image_pipeline(encode_png(quadrant_image), 4, 0.5, mask=b"\x01" * 3)

    def test_garbage_bytes(self):
        with pytest.raises(DecodeError):
            process_image_pipeline(b"definitely not an image", 4, 0.5)

    def test_degenerate_dimensions(self, encode_png):
        image = np.zeros((5, 1, 3), dtype=np.uint8)

        with pytest.raises(DegenerateDimensionsError):
            process_image_pipeline(encode_png(image), 4, 0.5)

    def test_process_pattern(self, encode_png, quadrant_image):
        pattern = process_pattern(encode_png(quadrant_image))

        assert (pattern.width, pattern.height) == (4, 4)
        assert pattern.total_stitches == 16

    def test_pipeline_pattern_matches_region_colors(self, encode_png, quadrant_image):
        data = encode_png(quadrant_image)

        for use_catalog_palette in (False, True):
            result = process_image_pipeline(data, 4, 0.5, use_catalog_palette=use_catalog_palette)
            pattern = pipeline_pattern(data, 4, 0.5, use_catalog_palette=use_catalog_palette)

            legend_colors = {(entry.code.upper(), entry.hex.upper()) for entry in pattern.legend}
            for region in result.regions:
                assert (region.color.code.upper(), region.color.hex.upper()) in legend_colors

    def test_process_pattern_file(self, encode_png, quadrant_image, tmp_path):
        path = tmp_path / "quadrants.png"
        path.write_bytes(encode_png(quadrant_image))

        pattern = process_pattern_file(path, ProcessingConfig(color_count=4, use_catalog_palette=False))

        assert len(pattern.legend) == 4
        assert [entry.count for entry in pattern.legend] == [4, 4, 4, 4]

    def test_process_pattern_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            process_pattern_file(tmp_path / "missing.png")


class TestPipelineCache:
    """Test the on-disk result cache."""

    def test_write_then_hit(self, encode_png, quadrant_image, tmp_path, caplog):
        data = encode_png(quadrant_image)

        first = process_image_pipeline(data, 4, 0.5, cache_dir=tmp_path)
        assert cache_path(tmp_path, first.cache_key).exists()

        with caplog.at_level(logging.INFO, logger="stitchvec.pipeline"):
            second = process_image_pipeline(data, 4, 0.5, cache_dir=tmp_path)

        assert second == first
        assert any("cache hit" in record.message for record in caplog.records)

    def test_no_temp_files_left(self, encode_png, quadrant_image, tmp_path):
        result = process_image_pipeline(encode_png(quadrant_image), 4, 0.5, cache_dir=tmp_path)

        assert [p.name for p in tmp_path.iterdir()] == [f"{result.cache_key}.json"]

    def test_corrupt_entry_recomputed(self, encode_png, quadrant_image, tmp_path, caplog):
        data = encode_png(quadrant_image)
        key = build_cache_key(data, 4, 0.5, 12, None)
        cache_path(tmp_path, key).write_text("{not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="stitchvec.pipeline"):
            result = process_image_pipeline(data, 4, 0.5, cache_dir=tmp_path)

        assert result.cache_key == key
        assert len(result.regions) == 4
        assert any("unreadable cache" in record.message for record in caplog.records)
        assert read_cached(tmp_path, key) == result

    def test_explicit_min_area_not_served_derived_result(self, encode_png, tmp_path):
        data = encode_png(speck_image())

        derived = process_image_pipeline(data, 3, 0.9, target_region_count=3, cache_dir=tmp_path)
        explicit = process_image_pipeline(
            data, 3, 0.9, target_region_count=3, cache_dir=tmp_path, min_region_area=0
        )

        assert derived.cache_key != explicit.cache_key
        assert sorted(region.area for region in derived.regions) == [72, 72]
        assert derived.fallback_reason == FallbackReason.TARGET_EXCEEDS_FEASIBLE
        assert sorted(region.area for region in explicit.regions) == [1, 71, 72]
        assert explicit.fallback_reason is None

    def test_changed_input_misses(self, encode_png, quadrant_image, tmp_path):
        first = process_image_pipeline(encode_png(quadrant_image), 4, 0.5, cache_dir=tmp_path)
        second = process_image_pipeline(encode_png(quadrant_image), 4, 0.9, cache_dir=tmp_path)

        assert first.cache_key != second.cache_key
        assert len(list(tmp_path.glob("*.json"))) == 2


class TestDiskCache:
    """Test RegionData JSON persistence."""

    def test_round_trip(self, encode_png, quadrant_image, tmp_path):
        result = process_image_pipeline(encode_png(quadrant_image), 4, 0.5)

        assert region_data_from_dict(region_data_to_dict(result)) == result
        write_cached(tmp_path, "abc", result)
        assert read_cached(tmp_path, "abc") == result

    def test_missing_entry(self, tmp_path):
        assert read_cached(tmp_path, "nothing") is None

    def test_malformed_entry(self, tmp_path):
        cache_path(tmp_path, "bad").write_text('{"width": 3}', encoding="utf-8")

        with pytest.raises(CacheIOError):
            read_cached(tmp_path, "bad")

    def test_unwritable_directory(self, encode_png, quadrant_image, tmp_path):
        result = process_image_pipeline(encode_png(quadrant_image), 4, 0.5)
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")

        with pytest.raises(CacheIOError):
            write_cached(blocker / "sub", "abc", result)
