"""Axis-aligned contour tracing on the pixel-corner lattice."""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from stitchvec.types import GridPoint, OutlineLoop, TraceAbortedError

logger = logging.getLogger(__name__)

Point = Tuple[int, int]
Segment = Tuple[Point, Point, int]  # (start, end, direction rank)

# right, down, left, up
DIRECTION_RANK = {(1, 0): 0, (0, 1): 1, (-1, 0): 2, (0, -1): 3}


def direction_rank(start: Point, end: Point) -> int:
    return DIRECTION_RANK.get((end[0] - start[0], end[1] - start[1]), 4)


def border_segments(mask: np.ndarray, offset_x: int = 0, offset_y: int = 0) -> List[Segment]:
    """
    Unit edges separating mask cells from everything else.

    Edges are wound clockwise in image coordinates: top edges run left to
    right, right edges top to bottom, bottom edges right to left and left
    edges bottom to top.

    Returns:
        Segments sorted by (start, end, direction rank)
    """
    mask = np.asarray(mask, dtype=bool)
    padded = np.pad(mask, 1, constant_values=False)
    inner = padded[1:-1, 1:-1]

    edges = (
        (inner & ~padded[:-2, 1:-1], (0, 0), (1, 0)),   # top
        (inner & ~padded[1:-1, 2:], (1, 0), (1, 1)),    # right
        (inner & ~padded[2:, 1:-1], (1, 1), (0, 1)),    # bottom
        (inner & ~padded[1:-1, :-2], (0, 1), (0, 0)),   # left
    )

    segments = []
    for border, (sx, sy), (ex, ey) in edges:
        ys, xs = np.nonzero(border)
        for x, y in zip((xs + offset_x).tolist(), (ys + offset_y).tolist()):
            start = (x + sx, y + sy)
            end = (x + ex, y + ey)
            segments.append((start, end, direction_rank(start, end)))

    segments.sort()
    return segments


def _walk_loop(
    first: int,
    segments: Sequence[Segment],
    outgoing: Dict[Point, List[int]],
    used: List[bool]
) -> List[Point]:
    """Follow unused segments from segments[first] until the loop closes or stalls."""
    current = segments[first][0]
    loop_start = current
    points: List[Point] = []
    steps = 0

    while True:
        steps += 1
        if steps > len(segments) + 2:
            raise TraceAbortedError(f"Contour walk from {loop_start} exceeded {len(segments) + 2} steps")

        candidates = outgoing.get(current)
        if not candidates:
            break
        selected = next((idx for idx in candidates if not used[idx]), None)
        if selected is None:
            break

        used[selected] = True
        start, end, _ = segments[selected]
        if not points:
            points.append(start)
        points.append(end)
        current = end

        if current == loop_start:
            break

    return points


def thread_segments(segments: Sequence[Segment]) -> List[List[Point]]:
    """
    Chain sorted segments into closed loops.

    Each walk starts at the lowest unused segment and always leaves a
    vertex by its lowest-rank unused outgoing segment. Walks that do not
    close are dropped; walks that hit the safety bound are logged and
    dropped.
    """
    outgoing: Dict[Point, List[int]] = {}
    for idx, (start, _, _) in enumerate(segments):
        outgoing.setdefault(start, []).append(idx)
    for start in outgoing:
        outgoing[start].sort(key=lambda idx: (segments[idx][2], idx))

    used = [False] * len(segments)
    loops = []
    for seg_idx in range(len(segments)):
        if used[seg_idx]:
            continue
        try:
            points = _walk_loop(seg_idx, segments, outgoing, used)
        except TraceAbortedError as e:
            logger.warning(f"Skipping malformed contour: {e}")
            continue
        if len(points) >= 4 and points[0] == points[-1]:
            loops.append(points)
    return loops


def collapse_collinear(points: Sequence[Point]) -> List[Point]:
    """
    Drop vertices lying on a straight horizontal or vertical run.

    Returns a closed loop, or [] if fewer than three vertices survive.
    """
    points = list(points)
    if len(points) < 4:
        return points
    if points[0] == points[-1]:
        points.pop()

    n = len(points)
    kept = []
    for i in range(n):
        px, py = points[i - 1]
        cx, cy = points[i]
        nx, ny = points[(i + 1) % n]
        if (px == cx == nx) or (py == cy == ny):
            continue
        kept.append(points[i])

    if len(kept) < 3:
        return []
    kept.append(kept[0])
    return kept


def _manhattan(a: Point, b: Point) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def reduce_micro_zigzags(points: Sequence[Point]) -> List[Point]:
    """
    Cut single-cell stair steps.

    A vertex one unit from both neighbors whose neighbors are two units
    apart is removed; passes repeat until nothing changes. Loops with fewer
    than five distinct vertices are returned unchanged.
    """
    points = list(points)
    if len(points) < 6:
        return points

    open_loop = points[:-1]
    changed = True
    while changed and len(open_loop) >= 4:
        changed = False
        n = len(open_loop)
        keep = [True] * n
        for i in range(n):
            prev = open_loop[i - 1]
            curr = open_loop[i]
            nxt = open_loop[(i + 1) % n]
            if _manhattan(prev, curr) == 1 and _manhattan(curr, nxt) == 1 and _manhattan(prev, nxt) == 2:
                keep[i] = False
                changed = True

        if changed:
            reduced = [p for p, k in zip(open_loop, keep) if k]
            if len(reduced) >= 3:
                open_loop = reduced
            else:
                break

    if len(open_loop) < 3:
        return []
    open_loop.append(open_loop[0])
    return open_loop


def loop_sort_key(points: Sequence[Point]):
    return (min(p[1] for p in points), min(p[0] for p in points), len(points))


def signed_area(points: Sequence) -> float:
    """Shoelace area; positive for clockwise loops in image coordinates."""
    n = len(points)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        ax, ay = points[i][0], points[i][1]
        bx, by = points[(i + 1) % n][0], points[(i + 1) % n][1]
        area += ax * by - bx * ay
    return area * 0.5


def trace_mask_loops(
    mask: np.ndarray,
    offset_x: int = 0,
    offset_y: int = 0,
    reduce_zigzags: bool = True
) -> List[List[GridPoint]]:
    """
    Closed integer loops around the cells of a boolean mask.

    Loops are collinear-collapsed, optionally zigzag-reduced, and sorted
    by (min_y, min_x, length).

    Args:
        mask: (H, W) cells belonging to one component
        offset_x: Added to every x coordinate
        offset_y: Added to every y coordinate
        reduce_zigzags: Whether to remove single-cell stair steps

    Returns:
        List of closed loops (first point repeated at the end)
    """
    segments = border_segments(mask, offset_x, offset_y)
    if not segments:
        return []

    loops = []
    for raw in thread_segments(segments):
        simplified = collapse_collinear(raw)
        if len(simplified) < 4:
            continue
        if reduce_zigzags:
            simplified = reduce_micro_zigzags(simplified)
            if len(simplified) < 4:
                continue
        loops.append(simplified)

    loops.sort(key=loop_sort_key)
    return [[GridPoint(x, y) for x, y in loop] for loop in loops]


def trace_component_loops(
    component_grid: np.ndarray,
    component_id: int,
    bbox: Optional[Tuple[int, int, int, int]] = None,
    reduce_zigzags: bool = True
) -> List[List[GridPoint]]:
    """
    Trace the loops of one component in a component id grid.

    Args:
        component_grid: (H, W) component ids
        component_id: Component to trace
        bbox: Optional (min_x, min_y, max_x, max_y) to restrict the scan
        reduce_zigzags: Whether to remove single-cell stair steps
    """
    if bbox is None:
        return trace_mask_loops(component_grid == component_id, reduce_zigzags=reduce_zigzags)
    min_x, min_y, max_x, max_y = bbox
    window = component_grid[min_y:max_y + 1, min_x:max_x + 1] == component_id
    return trace_mask_loops(window, min_x, min_y, reduce_zigzags)


def classify_loops(loops: Sequence[Sequence[GridPoint]]) -> List[OutlineLoop]:
    """
    Tag the loop with the largest absolute area as outer, the rest as holes.
    """
    outlines = [
        OutlineLoop(points=list(loop), signed_area=signed_area([(p.x, p.y) for p in loop]))
        for loop in loops
    ]
    if not outlines:
        return outlines
    outer_index = max(range(len(outlines)), key=lambda i: (abs(outlines[i].signed_area), -i))
    for i, outline in enumerate(outlines):
        outline.is_hole = i != outer_index
    return outlines
