"""Shared fixtures for stitchvec tests."""
import io

import numpy as np
import pytest
from PIL import Image

from stitchvec.pattern_assembler import build_legend
from stitchvec.region_cache import get_region_cache
from stitchvec.selection import clear_workspace
from stitchvec.types import FABRIC_CODE, FABRIC_HEX, PatternResult, Stitch

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
YELLOW = (255, 255, 0)
BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


@pytest.fixture(autouse=True)
def reset_global_state():
    """Process-wide caches start empty for every test."""
    get_region_cache().clear()
    clear_workspace()
    yield
    get_region_cache().clear()
    clear_workspace()


@pytest.fixture
def encode_png():
    """Encode an (H, W, 3|4) uint8 array as PNG bytes."""
    def _encode(array):
        array = np.asarray(array, dtype=np.uint8)
        buffer = io.BytesIO()
        Image.fromarray(array).save(buffer, format='PNG')
        return buffer.getvalue()
    return _encode


@pytest.fixture
def quadrant_image():
    """4x4 image with four solid 2x2 quadrants."""
    image = np.zeros((4, 4, 3), dtype=np.uint8)
    image[:2, :2] = RED
    image[:2, 2:] = GREEN
    image[2:, :2] = BLUE
    image[2:, 2:] = YELLOW
    return image


@pytest.fixture
def checkerboard_image():
    """3x3 black/white checkerboard, black in the corners."""
    image = np.zeros((3, 3, 3), dtype=np.uint8)
    for y in range(3):
        for x in range(3):
            image[y, x] = BLACK if (x + y) % 2 == 0 else WHITE
    return image


@pytest.fixture
def make_pattern():
    """
    Build a PatternResult from rows of thread codes.

    None marks a fabric cell. hexes maps each code to its color.
    """
    def _make(rows, hexes):
        stitches = []
        for y, row in enumerate(rows):
            for x, code in enumerate(row):
                if code is None:
                    stitches.append(Stitch(x, y, FABRIC_CODE, "", FABRIC_HEX))
                else:
                    stitches.append(Stitch(x, y, code, "S", hexes[code]))
        legend, total = build_legend(stitches)
        return PatternResult(
            width=len(rows[0]) if rows else 0,
            height=len(rows),
            stitches=stitches,
            legend=legend,
            total_stitches=total
        )
    return _make


@pytest.fixture
def donut_pattern(make_pattern):
    """5x5 black field with a yellow ring around a single red center."""
    rows = []
    for y in range(5):
        row = []
        for x in range(5):
            if (x, y) == (2, 2):
                row.append("321")
            elif 1 <= x <= 3 and 1 <= y <= 3:
                row.append("444")
            else:
                row.append("310")
        rows.append(row)
    return make_pattern(rows, {"310": "#000000", "444": "#FFD600", "321": "#C72B3B"})
