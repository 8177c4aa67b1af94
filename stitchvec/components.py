"""Four-connected component analysis over a label grid."""
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from scipy import ndimage

from stitchvec.types import Component

# 4-connectivity
FOUR_CONNECTED = ndimage.generate_binary_structure(2, 1)


@dataclass
class ComponentAnalysis:
    """Components in discovery order plus the per-pixel component id grid."""
    components: List[Component]
    component_grid: np.ndarray  # (H, W) int, -1 where unlabeled


def label_components(labels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a label grid into four-connected components.

    Component ids follow row-major discovery order: a component's id is its
    rank when components are ordered by their first pixel in a row-major
    scan. Negative labels are treated as empty cells.

    Args:
        labels: (H, W) integer label grid

    Returns:
        Tuple of (component grid with -1 for empty cells, label of each component)
    """
    labels = np.asarray(labels)
    height, width = labels.shape
    grid = np.full((height, width), -1, dtype=np.int64)
    if labels.size == 0:
        return grid, np.zeros(0, dtype=np.int64)

    comp_labels = []
    offset = 0
    for value in np.unique(labels):
        if value < 0:
            continue
        labeled, num = ndimage.label(labels == value, structure=FOUR_CONNECTED)
        if num == 0:
            continue
        inside = labeled > 0
        grid[inside] = labeled[inside] - 1 + offset
        comp_labels.extend([int(value)] * num)
        offset += num

    if offset == 0:
        return grid, np.zeros(0, dtype=np.int64)

    # Renumber by first pixel in row-major order
    flat = grid.reshape(-1)
    valid = np.flatnonzero(flat >= 0)
    first_seen = np.full(offset, flat.size, dtype=np.int64)
    np.minimum.at(first_seen, flat[valid], valid)
    order = np.argsort(first_seen, kind='stable')
    remap = np.empty(offset, dtype=np.int64)
    remap[order] = np.arange(offset)

    flat[valid] = remap[flat[valid]]
    comp_labels = np.asarray(comp_labels, dtype=np.int64)[order]
    return grid, comp_labels


def component_pixels(component_grid: np.ndarray, count: int) -> List[np.ndarray]:
    """Flat pixel indices of each component, ascending."""
    flat = np.asarray(component_grid).reshape(-1)
    valid = np.flatnonzero(flat >= 0)
    order = np.argsort(flat[valid], kind='stable')
    sorted_idx = valid[order]
    bounds = np.searchsorted(flat[sorted_idx], np.arange(count + 1))
    return [sorted_idx[bounds[i]:bounds[i + 1]] for i in range(count)]


def adjacency_counts(component_grid: np.ndarray, count: int) -> List[List[Tuple[int, int]]]:
    """
    Shared boundary lengths between touching components.

    Every horizontal and vertical cell edge separating two different
    components adds one to both directions, so the graph is symmetric.
    Neighbor lists are sorted by neighbor id.
    """
    grid = np.asarray(component_grid)
    pairs = []

    left, right = grid[:, :-1].reshape(-1), grid[:, 1:].reshape(-1)
    top, bottom = grid[:-1, :].reshape(-1), grid[1:, :].reshape(-1)
    for a, b in ((left, right), (top, bottom)):
        sel = (a >= 0) & (b >= 0) & (a != b)
        pairs.append(np.stack([a[sel], b[sel]], axis=1))
        pairs.append(np.stack([b[sel], a[sel]], axis=1))

    neighbors: List[List[Tuple[int, int]]] = [[] for _ in range(count)]
    if not pairs:
        return neighbors
    all_pairs = np.concatenate(pairs, axis=0)
    if all_pairs.size == 0:
        return neighbors

    unique_pairs, lengths = np.unique(all_pairs, axis=0, return_counts=True)
    # np.unique sorts rows lexicographically: by source, then neighbor id
    for (src, dst), length in zip(unique_pairs, lengths):
        neighbors[int(src)].append((int(dst), int(length)))
    return neighbors


def analyze_components(labels: np.ndarray) -> ComponentAnalysis:
    """
    Full component analysis: areas, bounding boxes, centroid sums,
    pixel lists and the adjacency graph.

    Centroid sums accumulate cell centers (x + 0.5, y + 0.5).
    """
    labels = np.asarray(labels)
    grid, comp_labels = label_components(labels)
    count = len(comp_labels)
    if count == 0:
        return ComponentAnalysis(components=[], component_grid=grid)

    height, width = grid.shape
    flat = grid.reshape(-1)
    valid = np.flatnonzero(flat >= 0)
    ids = flat[valid]
    xs = valid % width
    ys = valid // width

    areas = np.bincount(ids, minlength=count)
    sum_x = np.bincount(ids, weights=xs + 0.5, minlength=count)
    sum_y = np.bincount(ids, weights=ys + 0.5, minlength=count)

    min_x = np.full(count, width, dtype=np.int64)
    min_y = np.full(count, height, dtype=np.int64)
    max_x = np.zeros(count, dtype=np.int64)
    max_y = np.zeros(count, dtype=np.int64)
    np.minimum.at(min_x, ids, xs)
    np.minimum.at(min_y, ids, ys)
    np.maximum.at(max_x, ids, xs)
    np.maximum.at(max_y, ids, ys)

    pixels = component_pixels(grid, count)
    neighbors = adjacency_counts(grid, count)

    components = [
        Component(
            id=i,
            label=int(comp_labels[i]),
            area=int(areas[i]),
            min_x=int(min_x[i]),
            min_y=int(min_y[i]),
            max_x=int(max_x[i]),
            max_y=int(max_y[i]),
            sum_x=float(sum_x[i]),
            sum_y=float(sum_y[i]),
            pixels=pixels[i].tolist(),
            neighbors=neighbors[i],
        )
        for i in range(count)
    ]
    return ComponentAnalysis(components=components, component_grid=grid)
