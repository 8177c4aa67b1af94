"""In-memory FIFO cache for region extraction, keyed by a FNV-1a content hash."""
import copy
import logging
import struct
import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

import numpy as np

from stitchvec.regions import RegionExtractionPayload, extract_regions
from stitchvec.types import PatternRegion

logger = logging.getLogger(__name__)

FNV_OFFSET_BASIS = 0xcbf29ce484222325
FNV_PRIME = 0x100000001b3
MASK_64 = 0xFFFFFFFFFFFFFFFF

REGION_CACHE_CAPACITY = 12

# Per-stitch record hashed row-wise; coordinates are signed so stray
# stitches outside the grid still hash
RECORD_DTYPE = np.dtype([('x', '<i8'), ('y', '<i8'), ('color', '<u4')])

# Stitch digests folded per block of this many
HASH_BLOCK = 256


def fnv1a_64(data: bytes, seed: int = FNV_OFFSET_BASIS) -> int:
    """64-bit FNV-1a; pass a previous result as seed to continue hashing."""
    h = seed
    for byte in data:
        h ^= byte
        h = (h * FNV_PRIME) & MASK_64
    return h


def fnv1a_64_rows(rows: np.ndarray) -> np.ndarray:
    """
    64-bit FNV-1a of every row of a (M, L) uint8 array at once.

    Each output equals fnv1a_64 of that row's bytes.
    """
    rows = np.ascontiguousarray(rows, dtype=np.uint8)
    hashes = np.full(rows.shape[0], FNV_OFFSET_BASIS, dtype=np.uint64)
    prime = np.uint64(FNV_PRIME)
    for column in rows.T:
        hashes ^= column
        hashes *= prime
    return hashes


def _field(value: str) -> bytes:
    return value.encode('utf-8') + b'\x00'


def _stitch_records(payload: RegionExtractionPayload) -> Tuple[np.ndarray, Dict[Tuple[str, str], int]]:
    colors: Dict[Tuple[str, str], int] = {}
    records = np.zeros(len(payload.stitches), dtype=RECORD_DTYPE)
    if not payload.stitches:
        return records, colors
    records['x'] = [stitch.x for stitch in payload.stitches]
    records['y'] = [stitch.y for stitch in payload.stitches]
    records['color'] = [
        colors.setdefault((stitch.code, stitch.hex), len(colors)) for stitch in payload.stitches
    ]
    return records, colors


def payload_hash(payload: RegionExtractionPayload) -> int:
    """
    Hash width, height, every stitch (x, y, code, hex) in order and every
    legend entry (code, hex) in order.

    Distinct stitch colors are hashed once in order of first appearance.
    Stitches become fixed-size records of (x, y, color index); records are
    hashed row-wise, their digests hashed per block, and the block digests
    folded into the running hash.
    """
    records, colors = _stitch_records(payload)
    count = len(records)

    h = fnv1a_64(struct.pack('<qqQ', payload.width, payload.height, count))
    for code, hex_str in colors:
        h = fnv1a_64(_field(code) + _field(hex_str), h)
    h = fnv1a_64(b'\x02', h)

    if count:
        record_bytes = np.frombuffer(records.tobytes(), dtype=np.uint8).reshape(count, RECORD_DTYPE.itemsize)
        digests = fnv1a_64_rows(record_bytes)
        padded = np.zeros(-(-count // HASH_BLOCK) * HASH_BLOCK, dtype='<u8')
        padded[:count] = digests
        blocks = fnv1a_64_rows(
            np.frombuffer(padded.tobytes(), dtype=np.uint8).reshape(-1, HASH_BLOCK * 8)
        )
        h = fnv1a_64(blocks.astype('<u8').tobytes(), h)

    h = fnv1a_64(b'\x01', h)
    for entry in payload.legend:
        h = fnv1a_64(_field(entry.code) + _field(entry.hex), h)
    return h


class RegionCache:
    """
    Bounded cache evicting the oldest insertion first.

    Values are deep-copied on the way in and out so callers never share
    state with the cache.
    """

    def __init__(self, capacity: int = REGION_CACHE_CAPACITY):
        self.capacity = max(int(capacity), 1)
        self._entries: "OrderedDict[int, List[PatternRegion]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: int) -> Optional[List[PatternRegion]]:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
                return None
            self.hits += 1
            return copy.deepcopy(value)

    def put(self, key: int, value: List[PatternRegion]) -> None:
        with self._lock:
            if key in self._entries:
                self._entries[key] = copy.deepcopy(value)
                return
            self._entries[key] = copy.deepcopy(value)
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Region cache evicted {evicted:016x}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __contains__(self, key: int) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_REGION_CACHE = RegionCache()


def get_region_cache() -> RegionCache:
    return _REGION_CACHE


def extract_regions_cached(
    payload: RegionExtractionPayload,
    cache: Optional[RegionCache] = None
) -> List[PatternRegion]:
    """extract_regions behind the process-wide (or given) cache."""
    cache = cache if cache is not None else _REGION_CACHE
    key = payload_hash(payload)
    cached = cache.get(key)
    if cached is not None:
        logger.debug(f"Region cache hit {key:016x}")
        return cached

    regions = extract_regions(payload)
    cache.put(key, regions)
    return regions
