"""Deterministic CIEDE2000 k-means color quantization."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from stitchvec.catalog import nearest_threads
from stitchvec.color_space import distances_to_centers, lab_to_hex, round_half_up
from stitchvec.parallel import map_chunks
from stitchvec.region_refiner import remove_small_regions
from stitchvec.types import CatalogThread, ProcessingConfig

logger = logging.getLogger(__name__)

MAX_CLUSTERS = 30
MIN_ITERATIONS = 8
EMPTY_CLUSTER_LAB = (50.0, 0.0, 0.0)


@dataclass
class QuantizationResult:
    """Per-pixel labels plus the final cluster colors and their catalog snap."""
    labels: np.ndarray  # (H, W) int, -1 for masked-out pixels
    palette_lab: np.ndarray  # (K, 3)
    palette_hex: List[str] = field(default_factory=list)
    threads: List[CatalogThread] = field(default_factory=list)
    iterations: int = 0
    training_size: int = 0


def quality_bias(config: ProcessingConfig) -> float:
    """Blend the detail and color-count knobs into [0, 1]."""
    detail_bias = min(max(1.0 - config.simplify_amount, 0.0), 1.0)
    color_bias = min(max((config.color_count - 2.0) / 62.0, 0.0), 1.0)
    return min(max((detail_bias + color_bias) * 0.5, 0.0), 1.0)


def training_size(quality: float) -> int:
    return int(round_half_up(8000.0 + 42000.0 * quality))


def iteration_budget(quality: float, smoothing_amount: float) -> int:
    smoothing = min(max(smoothing_amount, 0.0), 1.0)
    budget = int(round_half_up(10.0 + quality * 10.0 + smoothing * 4.0))
    return max(budget, MIN_ITERATIONS)


def select_training_pixels(
    pixels: np.ndarray,
    mask: Optional[np.ndarray],
    stride: int
) -> np.ndarray:
    """
    Take every stride-th pixel, after dropping masked-out pixels.

    Falls back to unmasked striding when the mask leaves nothing.
    """
    if mask is not None:
        candidates = pixels[np.asarray(mask).reshape(-1) > 0][::stride]
        if len(candidates) > 0:
            return candidates
    return pixels[::stride]


def assign_labels(
    pixels: np.ndarray,
    centers: np.ndarray,
    parallel_workers: int = -1
) -> np.ndarray:
    """Index of the nearest center for every pixel; ties go to the lower index."""
    if len(pixels) == 0:
        return np.zeros(0, dtype=np.int64)

    def _assign(start, stop):
        return np.argmin(distances_to_centers(pixels[start:stop], centers), axis=1)

    chunks = map_chunks(_assign, len(pixels), parallel_workers=parallel_workers)
    return np.concatenate(chunks).astype(np.int64)


def _distances_to(pixels: np.ndarray, center: np.ndarray, parallel_workers: int) -> np.ndarray:
    def _dist(start, stop):
        return distances_to_centers(pixels[start:stop], center)[:, 0]

    return np.concatenate(map_chunks(_dist, len(pixels), parallel_workers=parallel_workers))


def farthest_point_init(
    samples: np.ndarray,
    k: int,
    parallel_workers: int = -1
) -> np.ndarray:
    """
    Deterministic k-means++ seeding.

    The first center is the sample at median luminance (stable sort by L).
    Each further center is the unchosen sample farthest from every center
    picked so far, earliest sample on ties.

    Args:
        samples: (N, 3) LAB training samples
        k: Number of centers, at most N

    Returns:
        (k, 3) initial centers
    """
    n = len(samples)
    order = np.argsort(samples[:, 0], kind='stable')
    first = int(order[n // 2])

    centers = [samples[first]]
    chosen = np.zeros(n, dtype=bool)
    chosen[first] = True
    min_dist = _distances_to(samples, samples[first], parallel_workers)

    while len(centers) < k:
        candidates = np.where(chosen, -np.inf, min_dist)
        best = int(np.argmax(candidates))
        chosen[best] = True
        centers.append(samples[best])
        min_dist = np.minimum(min_dist, _distances_to(samples, samples[best], parallel_workers))

    return np.array(centers, dtype=np.float64)


def cluster_means(
    pixels: np.ndarray,
    labels: np.ndarray,
    k: int,
    fallback: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Per-cluster LAB means.

    Empty clusters take the matching row of fallback, or a neutral mid gray.
    """
    counts = np.bincount(labels, minlength=k)[:k]
    means = np.empty((k, 3), dtype=np.float64)
    for channel in range(3):
        sums = np.bincount(labels, weights=pixels[:, channel], minlength=k)[:k]
        with np.errstate(invalid='ignore', divide='ignore'):
            means[:, channel] = sums / counts
    empty = counts == 0
    if np.any(empty):
        means[empty] = fallback[empty] if fallback is not None else EMPTY_CLUSTER_LAB
    return means


def kmeans(
    samples: np.ndarray,
    k: int,
    max_iterations: int,
    parallel_workers: int = -1
):
    """
    Lloyd iterations from farthest-point seeds.

    Stops early once an assignment round changes no label.

    Returns:
        Tuple of (centers (k, 3), sample labels, rounds run)
    """
    if len(samples) == 0 or k <= 0:
        return np.zeros((0, 3), dtype=np.float64), np.zeros(0, dtype=np.int64), 0

    k = min(k, len(samples))
    centers = farthest_point_init(samples, k, parallel_workers)
    labels = np.zeros(len(samples), dtype=np.int64)

    rounds = 0
    for _ in range(max_iterations):
        rounds += 1
        new_labels = assign_labels(samples, centers, parallel_workers)
        changed = int(np.count_nonzero(new_labels != labels))
        labels = new_labels
        if changed == 0:
            break
        centers = cluster_means(samples, labels, k, fallback=centers)

    return centers, labels, rounds


def quantize(
    lab_image: np.ndarray,
    config: ProcessingConfig,
    mask: Optional[np.ndarray] = None
) -> QuantizationResult:
    """
    Quantize a LAB image into at most 30 clusters and snap them to the catalog.

    Args:
        lab_image: (H, W, 3) LAB pixels
        config: Processing configuration (already clamped)
        mask: Optional flat per-pixel mask, nonzero = in pattern; other
            pixels are labelled -1

    Returns:
        QuantizationResult; empty palette for an empty image
    """
    height, width = lab_image.shape[:2]
    pixels = np.asarray(lab_image, dtype=np.float64).reshape(-1, 3)
    n = len(pixels)

    if n == 0:
        return QuantizationResult(
            labels=np.zeros((height, width), dtype=np.int64),
            palette_lab=np.zeros((0, 3), dtype=np.float64)
        )

    quality = quality_bias(config)
    max_train = training_size(quality)
    stride = max(n // max(max_train, 1), 1)
    training = select_training_pixels(pixels, mask, stride)

    k = min(int(config.color_count), MAX_CLUSTERS)
    iterations = iteration_budget(quality, config.smoothing_amount)
    centers, _, rounds = kmeans(training, k, iterations, config.parallel_workers)
    k = len(centers)

    logger.debug(
        f"k-means: {len(training)} training samples (stride {stride}), "
        f"k={k}, {rounds}/{iterations} rounds"
    )

    labels = assign_labels(pixels, centers, config.parallel_workers)
    if mask is not None:
        # Fabric cells take no part in cleanup or palette means
        labels[np.asarray(mask).reshape(-1) == 0] = -1
    labels = labels.reshape(height, width)

    if config.min_region_size > 1:
        labels = remove_small_regions(labels, centers, config.min_region_size)

    flat_labels = labels.reshape(-1)
    in_pattern = flat_labels >= 0
    palette_lab = cluster_means(pixels[in_pattern], flat_labels[in_pattern], k)
    palette_hex = [lab_to_hex(lab) for lab in palette_lab]
    threads = nearest_threads(palette_lab)

    return QuantizationResult(
        labels=labels,
        palette_lab=palette_lab,
        palette_hex=palette_hex,
        threads=threads,
        iterations=rounds,
        training_size=len(training)
    )
