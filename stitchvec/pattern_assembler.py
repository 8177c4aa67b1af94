"""Stitch grid and legend assembly."""
import csv
import io
import logging
import time
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from stitchvec.catalog import find_thread
from stitchvec.color_space import composite_on_white, normalize_hex, rgb_to_lab
from stitchvec.quantizer import quantize
from stitchvec.raster_ingest import as_rgba, normalize_mask
from stitchvec.types import (
    FABRIC_CODE,
    FABRIC_HEX,
    CatalogThread,
    ColorMapping,
    LegendEntry,
    ManualEdit,
    PatternResult,
    ProcessingConfig,
    Stitch,
    ThreadMetadata,
)

logger = logging.getLogger(__name__)

MARKERS = (
    'S', 'O', 'T', '*', 'D', 'X', '+', '#', '%', '@', 'A', 'B', 'C', 'E', 'H',
    'K', 'M', 'N', 'P', 'R', 'U', 'V', 'W', 'Y', 'Z', '0', '1', '2', '3', '4',
)

RAW_PREFIX = "RAW-"
RAW_NAME = "Quantized Color"
CUSTOM_NAME = "Custom Color"

LEGEND_CSV_HEADER = (
    'mode',
    'label',
    'hex',
    'catalog_code',
    'catalog_name',
    'stitch_count',
    'coverage_percent',
)


def marker_for_label(label: int) -> str:
    return MARKERS[label % len(MARKERS)]


def raw_code(label: int) -> str:
    return f"{RAW_PREFIX}{label + 1}"


def is_raw_code(code: str) -> bool:
    return code.upper().startswith(RAW_PREFIX)


def assemble_stitches(
    labels: np.ndarray,
    palette_hex: Sequence[str],
    threads: Sequence[CatalogThread],
    use_catalog_palette: bool,
    mask: Optional[np.ndarray] = None
) -> List[Stitch]:
    """
    One stitch per pixel in row-major order.

    Masked-out pixels become Fabric stitches (no marker, white). Other
    pixels carry the catalog thread of their cluster, or a synthetic
    RAW code with the cluster color when catalog snapping is off.
    """
    height, width = labels.shape
    flat_labels = labels.reshape(-1)
    fabric = np.zeros(flat_labels.size, dtype=bool)
    if mask is not None:
        fabric = np.asarray(mask).reshape(-1) == 0

    if use_catalog_palette:
        codes = [thread.code for thread in threads]
        hexes = [thread.hex for thread in threads]
    else:
        codes = [raw_code(i) for i in range(len(palette_hex))]
        hexes = list(palette_hex)
    markers = [marker_for_label(i) for i in range(len(codes))]

    stitches = []
    for i, label in enumerate(flat_labels.tolist()):
        x = i % width
        y = i // width
        if fabric[i]:
            stitches.append(Stitch(x, y, FABRIC_CODE, "", FABRIC_HEX))
        else:
            stitches.append(Stitch(x, y, codes[label], markers[label], hexes[label]))
    return stitches


def _legend_name(code: str, names: Dict[str, str]) -> str:
    if is_raw_code(code):
        return RAW_NAME
    key = code.strip().upper()
    if key in names:
        return names[key]
    thread = find_thread(code)
    return thread.name if thread is not None else CUSTOM_NAME


def build_legend(
    stitches: Iterable[Stitch],
    names: Optional[Dict[str, str]] = None
) -> Tuple[List[LegendEntry], int]:
    """
    Group non-fabric stitches by code.

    Entries are sorted by count descending; equal counts keep the order in
    which their code first appears in the grid.

    Args:
        stitches: Stitch grid
        names: Optional upper-cased code -> display name overrides

    Returns:
        Tuple of (legend, total non-fabric stitches)
    """
    names = names or {}
    counts: Dict[str, int] = {}
    first_hex: Dict[str, str] = {}
    for stitch in stitches:
        if stitch.is_fabric:
            continue
        if stitch.code not in counts:
            counts[stitch.code] = 0
            first_hex[stitch.code] = stitch.hex
        counts[stitch.code] += 1

    total = sum(counts.values())
    legend = [
        LegendEntry(
            code=code,
            name=_legend_name(code, names),
            hex=first_hex[code],
            count=count,
            coverage=count / total if total else 0.0
        )
        for code, count in counts.items()
    ]
    legend.sort(key=lambda entry: -entry.count)
    return legend, total


def _names_from_mappings(mappings: Sequence[ColorMapping]) -> Dict[str, str]:
    names = {}
    for mapping in mappings:
        names.setdefault(mapping.thread.code.strip().upper(), mapping.thread.name)
    return names


def generate_pattern(
    image: np.ndarray,
    config: Optional[ProcessingConfig] = None,
    mask: Optional[np.ndarray] = None
) -> PatternResult:
    """
    Turn an RGBA image into a stitch pattern.

    Pixels are composited on white, quantized in LAB, cleaned of speckles
    smaller than min_region_size and snapped to catalog threads.

    Args:
        image: (H, W, 3|4) image array
        config: Processing configuration, clamped before use
        mask: Optional per-pixel mask; 0 marks fabric

    Returns:
        PatternResult (empty stitch list for an empty image)
    """
    start_time = time.perf_counter()
    config = (config or ProcessingConfig()).clamped()

    rgba = as_rgba(image)
    height, width = rgba.shape[:2]
    flat_mask = normalize_mask(mask, width, height)

    if width * height == 0:
        return PatternResult(width=width, height=height)

    lab_image = rgb_to_lab(composite_on_white(rgba))
    quantized = quantize(lab_image, config, flat_mask)

    mappings = [
        ColorMapping(
            original_hex=original,
            mapped_hex=thread.hex,
            thread=ThreadMetadata(code=thread.code, name=thread.name, hex=thread.hex)
        )
        for original, thread in zip(quantized.palette_hex, quantized.threads)
    ]

    stitches = assemble_stitches(
        quantized.labels,
        quantized.palette_hex,
        quantized.threads,
        config.use_catalog_palette,
        flat_mask
    )
    legend, total = build_legend(stitches, _names_from_mappings(mappings))

    elapsed_ms = int((time.perf_counter() - start_time) * 1000)
    logger.info(
        f"Pattern {width}x{height}: {len(quantized.palette_hex)} clusters, "
        f"{len(legend)} legend entries, {total} stitches in {elapsed_ms}ms"
    )

    return PatternResult(
        width=width,
        height=height,
        stitches=stitches,
        palette=list(quantized.palette_hex),
        catalog_palette=[thread.hex for thread in quantized.threads],
        legend=legend,
        color_mappings=mappings,
        total_stitches=total,
        processing_time_ms=elapsed_ms
    )


def apply_manual_edits(pattern: PatternResult, edits: Sequence[ManualEdit]) -> PatternResult:
    """
    Override individual stitches and rebuild the legend.

    Out-of-range and incomplete thread edits are ignored. Returns the same
    object when nothing changed, otherwise a new PatternResult.
    """
    stitches = list(pattern.stitches)
    changed = False

    for edit in edits:
        x, y = int(edit.x), int(edit.y)
        if x < 0 or y < 0 or x >= pattern.width or y >= pattern.height:
            continue
        index = y * pattern.width + x
        if index >= len(stitches):
            continue
        current = stitches[index]

        if edit.mode == "fabric":
            updated = Stitch(current.x, current.y, FABRIC_CODE, "", FABRIC_HEX)
        else:
            if not edit.hex:
                continue
            updated = Stitch(
                current.x,
                current.y,
                edit.code if edit.code is not None else current.code,
                edit.marker if edit.marker is not None else current.marker,
                normalize_hex(edit.hex)
            )

        if updated == current:
            continue
        stitches[index] = updated
        changed = True

    if not changed:
        return pattern

    legend, total = build_legend(stitches, _names_from_mappings(pattern.color_mappings))
    return PatternResult(
        width=pattern.width,
        height=pattern.height,
        stitches=stitches,
        palette=list(pattern.palette),
        catalog_palette=list(pattern.catalog_palette),
        legend=legend,
        color_mappings=list(pattern.color_mappings),
        total_stitches=total,
        processing_time_ms=pattern.processing_time_ms
    )


def _format_percent(coverage: float) -> str:
    return format(round(coverage * 100.0, 1), 'g')


def legend_to_csv(pattern: PatternResult, mode: str = "catalog") -> str:
    """
    Legend as CSV text (CRLF line endings, minimal quoting).

    Catalog threads are labelled by code; RAW entries by hex with empty
    catalog columns.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\r\n')
    writer.writerow(LEGEND_CSV_HEADER)
    for entry in pattern.legend:
        mapped = not is_raw_code(entry.code)
        writer.writerow([
            mode,
            entry.code if mapped else entry.hex,
            entry.hex,
            entry.code if mapped else '',
            entry.name if mapped else '',
            str(entry.count),
            _format_percent(entry.coverage),
        ])
    return buffer.getvalue()
