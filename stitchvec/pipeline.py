"""End-to-end image -> vector region pipeline with content-addressed caching."""
import hashlib
import logging
import struct
import time
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from stitchvec.disk_cache import read_cached, write_cached
from stitchvec.pattern_assembler import generate_pattern
from stitchvec.raster_ingest import check_dimensions, decode_image, ingest, normalize_mask
from stitchvec.types import (
    CacheIOError,
    PatternResult,
    PerfStats,
    ProcessingConfig,
    RegionConfig,
    RegionData,
    RegionPreset,
)
from stitchvec.vector_regions import build_vector_regions

logger = logging.getLogger(__name__)

# Bump whenever pipeline output changes shape or content
PIPELINE_CACHE_VERSION = 3

DEFAULT_TARGET_REGIONS = 12
MAX_MIN_REGION_AREA = 24


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def detail_settings(
    color_count: int,
    detail_level: float,
    use_catalog_palette: bool = False
) -> Tuple[ProcessingConfig, RegionPreset]:
    """
    Map the single detail knob onto pattern and region settings.

    Catalog snapping is off by default so distinct quantized colors stay
    distinct for contouring.
    """
    detail = _clamp(float(detail_level), 0.0, 1.0)
    if detail >= 0.8:
        min_region_size = 1
    elif detail >= 0.55:
        min_region_size = 2
    elif detail >= 0.3:
        min_region_size = 3
    else:
        min_region_size = 4

    if detail >= 0.8:
        preset = RegionPreset.HIGH_DETAIL
    elif detail >= 0.4:
        preset = RegionPreset.STANDARD
    else:
        preset = RegionPreset.DRAFT

    config = ProcessingConfig(
        color_count=int(_clamp(int(color_count), 2, 64)),
        use_catalog_palette=bool(use_catalog_palette),
        smoothing_amount=0.2 + (1.0 - detail) * 0.4,
        simplify_amount=0.1 + (1.0 - detail) * 0.5,
        min_region_size=min_region_size
    )
    return config, preset


def default_min_region_area(width: int, height: int, target_region_count: int) -> int:
    """Minimum merged region area, scaled down so small images stay feasible."""
    per_region = (width * height) // max(4 * target_region_count, 1)
    return int(_clamp(per_region, 1, MAX_MIN_REGION_AREA))


def _mask_bytes(mask) -> bytes:
    if mask is None:
        return b''
    if isinstance(mask, (bytes, bytearray, memoryview)):
        return bytes(mask)
    return np.asarray(mask, dtype=np.uint8).tobytes()


def build_cache_key(
    image_data: bytes,
    color_count: int,
    detail_level: float,
    target_region_count: int = DEFAULT_TARGET_REGIONS,
    mask=None,
    min_region_area: Optional[int] = None,
    preset: Optional[RegionPreset] = None,
    use_catalog_palette: bool = False
) -> str:
    """
    SHA-256 hex digest over the version byte and every pipeline input.

    Overrides carry a presence flag so an explicit value never shares a key
    with the derived default.
    """
    hasher = hashlib.sha256()
    hasher.update(bytes([PIPELINE_CACHE_VERSION]))
    hasher.update(image_data)
    hasher.update(bytes([int(color_count) & 0xFF]))
    hasher.update(struct.pack('<f', float(detail_level)))
    hasher.update(struct.pack('<I', int(target_region_count)))
    hasher.update(struct.pack('<?I', min_region_area is not None, max(int(min_region_area or 0), 0)))
    hasher.update(struct.pack('<?', preset is not None))
    hasher.update((preset.value if preset else '').encode('utf-8'))
    hasher.update(struct.pack('<?', bool(use_catalog_palette)))
    hasher.update(_mask_bytes(mask))
    return hasher.hexdigest()


def _decode_for_pipeline(image_data: bytes, mask) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    image = decode_image(image_data)
    height, width = image.shape[:2]
    check_dimensions(width, height)
    return image, normalize_mask(mask, width, height)


def pipeline_pattern(
    image_data: bytes,
    color_count: int,
    detail_level: float,
    mask=None,
    use_catalog_palette: bool = False
) -> PatternResult:
    """
    The stitch pattern process_image_pipeline consolidates into regions.

    Legends and previews built from this pattern use the same colors as
    the regions of a pipeline run with the same arguments.

    Raises:
        DecodeError: If the image cannot be decoded
        DegenerateDimensionsError: If the image is smaller than 2x2
    """
    image, flat_mask = _decode_for_pipeline(image_data, mask)
    config, _ = detail_settings(color_count, detail_level, use_catalog_palette)
    return generate_pattern(image, config, flat_mask)


def process_pattern(
    image_data: bytes,
    config: Optional[ProcessingConfig] = None,
    mask=None
) -> PatternResult:
    """
    Decode encoded image bytes and generate a stitch pattern.

    Raises:
        DecodeError: If the bytes cannot be decoded
    """
    return generate_pattern(decode_image(image_data), config, mask)


def process_pattern_file(
    path: Union[str, Path],
    config: Optional[ProcessingConfig] = None,
    mask=None
) -> PatternResult:
    """
    Load an image file and generate a stitch pattern.

    Raises:
        FileNotFoundError: If file doesn't exist
        DecodeError: If file cannot be decoded
    """
    return generate_pattern(ingest(path), config, mask)


def process_image_pipeline(
    image_data: bytes,
    color_count: int,
    detail_level: float,
    mask=None,
    target_region_count: int = DEFAULT_TARGET_REGIONS,
    cache_dir: Optional[Union[str, Path]] = None,
    min_region_area: Optional[int] = None,
    preset: Optional[RegionPreset] = None,
    use_catalog_palette: bool = False
) -> RegionData:
    """
    Image bytes to consolidated vector regions.

    Args:
        image_data: Encoded image bytes
        color_count: Number of colors, clamped to [2, 64]
        detail_level: Detail in [0, 1]; drives cleanup, smoothing and preset
        mask: Optional per-pixel mask; 0 marks fabric
        target_region_count: Region count the merger aims for
        cache_dir: Directory for cached results, None disables caching
        min_region_area: Minimum merged region area (derived when None)
        preset: Region preset override (derived from detail when None)
        use_catalog_palette: Snap cluster colors to catalog threads

    Returns:
        RegionData

    Raises:
        DecodeError: If the image cannot be decoded
        DegenerateDimensionsError: If the image is smaller than 2x2
    """
    total_start = time.perf_counter()
    color_count = int(_clamp(int(color_count), 2, 64))
    detail_level = _clamp(float(detail_level), 0.0, 1.0)
    target_region_count = max(int(target_region_count), 1)
    if min_region_area is not None:
        min_region_area = max(int(min_region_area), 1)

    cache_key = build_cache_key(
        image_data, color_count, detail_level, target_region_count,
        mask, min_region_area, preset, use_catalog_palette
    )

    if cache_dir is not None:
        try:
            cached = read_cached(cache_dir, cache_key)
        except CacheIOError as e:
            logger.warning(f"Ignoring unreadable cache entry: {e}")
            cached = None
        if cached is not None:
            logger.info(f"Pipeline cache hit {cache_key[:12]}")
            return cached

    decode_start = time.perf_counter()
    image, flat_mask = _decode_for_pipeline(image_data, mask)
    height, width = image.shape[:2]
    decode_ms = int((time.perf_counter() - decode_start) * 1000)

    quantize_start = time.perf_counter()
    config, detail_preset = detail_settings(color_count, detail_level, use_catalog_palette)
    pattern = generate_pattern(image, config, flat_mask)
    quantize_ms = int((time.perf_counter() - quantize_start) * 1000)

    contour_start = time.perf_counter()
    preset = preset or detail_preset
    if min_region_area is None:
        min_region_area = default_min_region_area(width, height, target_region_count)
    region_config = RegionConfig.from_preset(preset, target_region_count, int(min_region_area))
    built = build_vector_regions(pattern, region_config, preset)
    contour_ms = int((time.perf_counter() - contour_start) * 1000)

    palette = []
    for region in built.regions:
        if region.color.hex not in palette:
            palette.append(region.color.hex)

    total_ms = int((time.perf_counter() - total_start) * 1000)
    result = RegionData(
        width=width,
        height=height,
        regions=built.regions,
        palette=palette,
        perf=PerfStats(
            decode_ms=decode_ms,
            quantize_ms=quantize_ms,
            contour_ms=contour_ms,
            total_ms=total_ms
        ),
        cache_key=cache_key,
        fallback_reason=built.fallback_reason
    )
    logger.info(
        f"Pipeline {width}x{height}: {len(result.regions)} regions, "
        f"{len(palette)} colors in {total_ms}ms"
    )

    if cache_dir is not None:
        try:
            write_cached(cache_dir, cache_key, result)
        except CacheIOError as e:
            logger.warning(f"Could not write pipeline cache: {e}")

    return result
