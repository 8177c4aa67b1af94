"""On-disk JSON cache for pipeline results."""
import json
import logging
import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Union

from stitchvec.types import (
    CacheIOError,
    FallbackReason,
    PerfStats,
    RegionBounds,
    RegionColor,
    RegionData,
    VectorRegion,
)

logger = logging.getLogger(__name__)


def region_data_to_dict(data: RegionData) -> dict:
    payload = asdict(data)
    payload['fallback_reason'] = data.fallback_reason.value if data.fallback_reason else None
    return payload


def region_data_from_dict(payload: dict) -> RegionData:
    """
    Rebuild RegionData from its JSON form.

    Raises:
        KeyError, TypeError, ValueError: On malformed payloads
    """
    regions = []
    for item in payload['regions']:
        color = item['color']
        regions.append(VectorRegion(
            region_id=item['region_id'],
            catalog_color_id=item['catalog_color_id'],
            color=RegionColor(
                rgb=tuple(color['rgb']),
                hex=color['hex'],
                code=color.get('code'),
                name=color.get('name')
            ),
            area=int(item['area']),
            path_svg=item['path_svg'],
            holes_svg=list(item.get('holes_svg', [])),
            bbox=RegionBounds(**item['bbox']),
            centroid_x=float(item['centroid_x']),
            centroid_y=float(item['centroid_y'])
        ))

    reason = payload.get('fallback_reason')
    return RegionData(
        width=int(payload['width']),
        height=int(payload['height']),
        regions=regions,
        palette=list(payload['palette']),
        perf=PerfStats(**payload['perf']),
        cache_key=payload['cache_key'],
        fallback_reason=FallbackReason(reason) if reason else None
    )


def cache_path(cache_dir: Union[str, Path], key: str) -> Path:
    return Path(cache_dir) / f"{key}.json"


def read_cached(cache_dir: Union[str, Path], key: str) -> Optional[RegionData]:
    """
    Load a cached result.

    Returns:
        RegionData, or None when no entry exists for the key

    Raises:
        CacheIOError: If the entry exists but cannot be read or parsed
    """
    path = cache_path(cache_dir, key)
    if not path.exists():
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return region_data_from_dict(json.load(f))
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise CacheIOError(f"Failed to read cache entry {path}: {e}")


def write_cached(cache_dir: Union[str, Path], key: str, data: RegionData) -> Path:
    """
    Store a result atomically (temp file in the same directory, then rename).

    Raises:
        CacheIOError: If the directory or file cannot be written
    """
    path = cache_path(cache_dir, key)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix='.tmp', dir=path.parent)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(region_data_to_dict(data), f)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise CacheIOError(f"Failed to write cache entry {path}: {e}")

    logger.debug(f"Cached pipeline result at {path}")
    return path
