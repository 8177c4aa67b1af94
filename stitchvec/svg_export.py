"""SVG path strings, SVG documents and raster previews."""
from pathlib import Path
from typing import Sequence, Union

import numpy as np
from PIL import Image

from stitchvec.color_space import hex_to_rgb
from stitchvec.types import PatternResult, VectorRegion

EMPTY_PATH = "M0,0 Z"


def loop_to_svg_path(points: Sequence) -> str:
    """
    Format a closed float polygon as `M x,y L x,y ... Z` with two decimals.

    Returns "" for loops with fewer than four points.
    """
    if len(points) < 4:
        return ""
    commands = []
    for idx, (x, y) in enumerate(points):
        prefix = "M" if idx == 0 else "L"
        commands.append(f"{prefix}{x:.2f},{y:.2f}")
    return " ".join(commands) + " Z"


def ensure_closed_svg_path(path: str) -> str:
    """Guarantee a path starts with M and ends with Z."""
    trimmed = path.strip()
    if not trimmed:
        return EMPTY_PATH
    if not trimmed.startswith("M"):
        trimmed = f"M0,0 {trimmed}"
    if not trimmed.endswith("Z"):
        trimmed = f"{trimmed} Z"
    return trimmed


def region_to_svg(region: VectorRegion, background: str = "#FFFFFF") -> str:
    """
    Region fill plus its holes painted in the background color.
    """
    elements = [
        f'<path id="{region.region_id}" d="{region.path_svg}" fill="{region.color.hex}"'
        f' data-color-id="{region.catalog_color_id}"/>'
    ]
    for hole in region.holes_svg:
        elements.append(f'<path d="{hole}" fill="{background}"/>')
    return '\n  '.join(elements)


def generate_svg(
    regions: Sequence[VectorRegion],
    width: int,
    height: int,
    background: str = "#FFFFFF"
) -> str:
    """
    Generate a complete SVG document from vector regions.

    Args:
        regions: Regions in paint order
        width: Pattern width in stitches
        height: Pattern height in stitches
        background: Page and hole color

    Returns:
        Complete SVG string
    """
    elements = [f'<rect x="0" y="0" width="{width}" height="{height}" fill="{background}"/>']
    elements.extend(region_to_svg(region, background) for region in regions)
    svg_content = '\n  '.join(elements)

    svg = f'''<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 {width} {height}" width="{width}" height="{height}">
  {svg_content}
</svg>'''

    return svg


def save_svg(svg_string: str, output_path: Union[str, Path]) -> None:
    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(svg_string)


def render_preview(pattern: PatternResult, cell_size: int = 8) -> Image.Image:
    """
    Rasterize the stitch grid, one cell_size square per stitch.
    """
    cell_size = max(int(cell_size), 1)
    grid = np.full((max(pattern.height, 1), max(pattern.width, 1), 3), 255, dtype=np.uint8)
    rgb_by_hex = {}
    for stitch in pattern.stitches:
        if stitch.hex not in rgb_by_hex:
            rgb_by_hex[stitch.hex] = hex_to_rgb(stitch.hex)
        grid[stitch.y, stitch.x] = rgb_by_hex[stitch.hex]

    image = Image.fromarray(grid)
    return image.resize(
        (image.width * cell_size, image.height * cell_size),
        resample=Image.NEAREST
    )


def save_preview_png(pattern: PatternResult, output_path: Union[str, Path], cell_size: int = 8) -> None:
    render_preview(pattern, cell_size).save(output_path, format='PNG')
