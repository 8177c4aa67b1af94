"""Float-space smoothing and simplification of traced loops."""
from typing import List, Sequence, Tuple

from stitchvec.boundary_extraction import signed_area
from stitchvec.types import GridPoint, RegionConfig

FloatPoint = Tuple[float, float]

CORNER_EPSILON = 1e-4


def squared_distance(a: FloatPoint, b: FloatPoint) -> float:
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    return dx * dx + dy * dy


def point_to_segment_distance_sq(p: FloatPoint, a: FloatPoint, b: FloatPoint) -> float:
    abx = b[0] - a[0]
    aby = b[1] - a[1]
    ab_len_sq = abx * abx + aby * aby
    if ab_len_sq <= 1e-8:
        return squared_distance(p, a)
    t = ((p[0] - a[0]) * abx + (p[1] - a[1]) * aby) / ab_len_sq
    t = min(max(t, 0.0), 1.0)
    return squared_distance(p, (a[0] + abx * t, a[1] + aby * t))


def is_corner(a: FloatPoint, b: FloatPoint, c: FloatPoint) -> bool:
    """True when a->b->c turns (non-zero cross product)."""
    cross = (b[0] - a[0]) * (c[1] - b[1]) - (b[1] - a[1]) * (c[0] - b[0])
    return abs(cross) > CORNER_EPSILON


def chaikin_smooth_closed(points: Sequence[FloatPoint], strength: float) -> List[FloatPoint]:
    """
    One round of Chaikin corner cutting on an open-form closed loop.

    Args:
        points: Loop vertices without the repeated closing point
        strength: [0, 1]; the cut ratio is 0.25 * strength

    Returns:
        Twice as many vertices, or the input when the cut is negligible
    """
    points = list(points)
    if len(points) < 3:
        return points

    alpha = 0.25 * min(max(strength, 0.0), 1.0)
    if alpha <= 1e-4:
        return points

    smoothed = []
    n = len(points)
    for i in range(n):
        p0 = points[i]
        p1 = points[(i + 1) % n]
        smoothed.append(((1.0 - alpha) * p0[0] + alpha * p1[0], (1.0 - alpha) * p0[1] + alpha * p1[1]))
        smoothed.append((alpha * p0[0] + (1.0 - alpha) * p1[0], alpha * p0[1] + (1.0 - alpha) * p1[1]))
    return smoothed


def merge_nearly_collinear_closed(points: Sequence[FloatPoint], tolerance: float) -> List[FloatPoint]:
    """Drop straight-run vertices lying within tolerance of their neighbors' chord."""
    points = list(points)
    if len(points) < 4:
        return points
    tol_sq = max(tolerance, 0.0) ** 2
    if tol_sq <= 0.0:
        return points

    n = len(points)
    reduced = []
    for i in range(n):
        prev = points[i - 1]
        curr = points[i]
        nxt = points[(i + 1) % n]
        if point_to_segment_distance_sq(curr, prev, nxt) > tol_sq or is_corner(prev, curr, nxt):
            reduced.append(curr)

    return points if len(reduced) < 3 else reduced


def simplify_float_loop(points: Sequence[FloatPoint], epsilon: float) -> List[FloatPoint]:
    """
    Drop vertices closer than epsilon to their predecessor unless they are corners.
    """
    points = list(points)
    if len(points) < 3:
        return points
    threshold = max(epsilon, 0.0)
    if threshold <= 1e-4:
        return points

    n = len(points)
    simplified = []
    for i in range(n):
        prev = points[i - 1]
        curr = points[i]
        nxt = points[(i + 1) % n]
        if is_corner(prev, curr, nxt) or squared_distance(prev, curr) ** 0.5 >= threshold:
            simplified.append(curr)

    return points if len(simplified) < 3 else simplified


def smooth_and_simplify_loop(loop: Sequence[GridPoint], config: RegionConfig) -> List[FloatPoint]:
    """
    Integer loop -> smoothed, simplified closed float polygon.

    Near-collinear merge, then smoothing_passes rounds of Chaikin cutting
    each followed by another merge, then distance simplification.

    Returns:
        Closed polygon (first point repeated), or [] if degenerate
    """
    closed = [(float(p.x), float(p.y)) for p in loop]
    if closed and closed[0] != closed[-1]:
        closed.append(closed[0])
    if len(closed) < 4:
        return []

    points = closed[:-1]
    points = merge_nearly_collinear_closed(points, max(config.simplify_epsilon * 0.18, 0.05))
    for _ in range(int(config.smoothing_passes)):
        points = chaikin_smooth_closed(points, config.smoothing_strength)
        points = merge_nearly_collinear_closed(points, max(config.simplify_epsilon * 0.12, 0.035))
        if len(points) < 3:
            break

    result = simplify_float_loop(points, config.simplify_epsilon)
    if result and result[0] != result[-1]:
        result.append(result[0])
    return result if len(result) >= 4 else []


def polygon_abs_area(points: Sequence[FloatPoint]) -> float:
    return abs(signed_area(points))
