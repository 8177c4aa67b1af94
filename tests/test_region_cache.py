"""Tests for the FNV-1a keyed region cache."""
import dataclasses
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from stitchvec.region_cache import (
    FNV_OFFSET_BASIS,
    REGION_CACHE_CAPACITY,
    RegionCache,
    extract_regions_cached,
    fnv1a_64,
    fnv1a_64_rows,
    get_region_cache,
    payload_hash,
)
from stitchvec.regions import RegionExtractionPayload, extract_regions
from stitchvec.types import Stitch


class TestFnv1a:
    """Test the 64-bit FNV-1a hash."""

    def test_known_vectors(self):
        assert fnv1a_64(b"") == FNV_OFFSET_BASIS
        assert fnv1a_64(b"a") == 0xaf63dc4c8601ec8c
        assert fnv1a_64(b"foobar") == 0x85944171f73967e8

    def test_incremental(self):
        assert fnv1a_64(b"bar", fnv1a_64(b"foo")) == fnv1a_64(b"foobar")

    def test_rows_match_scalar(self):
        rows = np.random.default_rng(9).integers(0, 256, size=(6, 37), dtype=np.uint8)

        hashes = fnv1a_64_rows(rows)

        assert [int(h) for h in hashes] == [fnv1a_64(row.tobytes()) for row in rows]
        assert int(fnv1a_64_rows(np.frombuffer(b"foobar", dtype=np.uint8).reshape(1, 6))[0]) == 0x85944171f73967e8

    def test_rows_of_nothing(self):
        assert [int(h) for h in fnv1a_64_rows(np.zeros((3, 0), dtype=np.uint8))] == [FNV_OFFSET_BASIS] * 3


class TestPayloadHash:
    """Test cache key derivation."""

    def test_stable(self, donut_pattern):
        payload = RegionExtractionPayload.from_pattern(donut_pattern)

        assert payload_hash(payload) == payload_hash(RegionExtractionPayload.from_pattern(donut_pattern))

    def test_any_stitch_change_changes_key(self, donut_pattern):
        payload = RegionExtractionPayload.from_pattern(donut_pattern)
        base = payload_hash(payload)

        recolored = list(payload.stitches)
        recolored[7] = dataclasses.replace(recolored[7], hex="#FFD601")
        recoded = list(payload.stitches)
        recoded[7] = dataclasses.replace(recoded[7], code="445")

        assert payload_hash(dataclasses.replace(payload, stitches=recolored)) != base
        assert payload_hash(dataclasses.replace(payload, stitches=recoded)) != base
        assert payload_hash(dataclasses.replace(payload, width=6)) != base
        assert payload_hash(dataclasses.replace(payload, legend=payload.legend[::-1])) != base


    def test_large_payload_tail_change(self):
        stitches = [Stitch(x, y, "310", "X", "#000000") for y in range(300) for x in range(300)]
        payload = RegionExtractionPayload(width=300, height=300, stitches=stitches)
        base = payload_hash(payload)

        tail = list(stitches)
        tail[-1] = dataclasses.replace(tail[-1], code="321", hex="#C72B3B")
        swapped = list(stitches)
        swapped[0], swapped[1] = swapped[1], swapped[0]

        assert payload_hash(RegionExtractionPayload(width=300, height=300, stitches=list(stitches))) == base
        assert payload_hash(dataclasses.replace(payload, stitches=tail)) != base
        assert payload_hash(dataclasses.replace(payload, stitches=swapped)) != base
        assert payload_hash(dataclasses.replace(payload, stitches=stitches[:-1])) != base

    def test_empty_payload(self):
        empty = RegionExtractionPayload(width=3, height=3)

        assert payload_hash(empty) == payload_hash(RegionExtractionPayload(width=3, height=3))
        assert payload_hash(empty) != payload_hash(RegionExtractionPayload(width=3, height=4))

class TestRegionCache:
    """Test FIFO eviction, copying and the cached extraction entry point."""

    def test_fifo_eviction(self):
        cache = RegionCache()
        for key in range(REGION_CACHE_CAPACITY + 1):
            cache.put(key, [])

        assert len(cache) == REGION_CACHE_CAPACITY
        assert 0 not in cache
        assert REGION_CACHE_CAPACITY in cache

    def test_get_does_not_refresh_order(self):
        cache = RegionCache(capacity=2)
        cache.put(1, [])
        cache.put(2, [])
        cache.get(1)
        cache.put(3, [])

        assert 1 not in cache
        assert 2 in cache

    def test_hits_are_copies(self, donut_pattern):
        cache = RegionCache()
        regions = extract_regions(RegionExtractionPayload.from_pattern(donut_pattern))
        cache.put(42, regions)

        first = cache.get(42)
        first[0].area = -1
        first.pop()

        second = cache.get(42)
        assert second == regions
        assert second is not first

    def test_cached_extraction(self, donut_pattern):
        payload = RegionExtractionPayload.from_pattern(donut_pattern)
        cache = get_region_cache()

        first = extract_regions_cached(payload)
        second = extract_regions_cached(payload)

        assert first == second
        assert first is not second
        assert cache.hits == 1
        assert cache.misses == 1
        assert payload_hash(payload) in cache

    def test_changed_input_misses(self, donut_pattern):
        payload = RegionExtractionPayload.from_pattern(donut_pattern)
        cache = RegionCache()
        extract_regions_cached(payload, cache)

        stitches = list(payload.stitches)
        stitches[12] = dataclasses.replace(stitches[12], code="444", hex="#FFD600")
        changed = extract_regions_cached(dataclasses.replace(payload, stitches=stitches), cache)

        assert cache.misses == 2
        assert len(changed) == 2

    def test_stray_negative_stitch(self, donut_pattern):
        payload = RegionExtractionPayload.from_pattern(donut_pattern)
        stray = dataclasses.replace(payload, stitches=payload.stitches + [Stitch(-1, 0, "321", "X", "#C72B3B")])

        regions = extract_regions_cached(stray, RegionCache())

        assert regions == extract_regions(stray)
        assert regions == extract_regions(payload)
        assert payload_hash(stray) != payload_hash(payload)

    def test_concurrent_callers(self, donut_pattern):
        payload = RegionExtractionPayload.from_pattern(donut_pattern)
        expected = extract_regions(payload)
        cache = RegionCache()

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: extract_regions_cached(payload, cache), range(32)))

        assert all(result == expected for result in results)
        assert len(cache) == 1
