"""Tests for k-means color quantization."""
import numpy as np
import pytest

from stitchvec.color_space import rgb_to_lab
from stitchvec.quantizer import (
    MAX_CLUSTERS,
    assign_labels,
    cluster_means,
    farthest_point_init,
    iteration_budget,
    kmeans,
    quality_bias,
    quantize,
    select_training_pixels,
    training_size,
)
from stitchvec.types import ProcessingConfig


def lab_image(rgb_image):
    return rgb_to_lab(np.asarray(rgb_image, dtype=np.uint8))


class TestBudgets:
    """Test the knob-derived training and iteration budgets."""

    def test_quality_bias_range(self):
        low = ProcessingConfig(color_count=2, simplify_amount=1.0)
        high = ProcessingConfig(color_count=64, simplify_amount=0.0)

        assert quality_bias(low) == pytest.approx(0.0)
        assert quality_bias(high) == pytest.approx(1.0)

    def test_training_size_bounds(self):
        assert training_size(0.0) == 8000
        assert training_size(1.0) == 50000
        assert training_size(0.5) == 29000

    def test_iteration_budget(self):
        assert iteration_budget(0.0, 0.0) == 10
        assert iteration_budget(1.0, 1.0) == 24
        assert iteration_budget(0.0, 0.5) == 12


class TestKMeans:
    """Test seeding, assignment and Lloyd iterations."""

    def test_assign_ties_go_to_lower_index(self):
        pixels = np.array([[50.0, 0.0, 0.0]])
        centers = np.array([[50.0, 0.0, 0.0], [50.0, 0.0, 0.0]])

        assert assign_labels(pixels, centers).tolist() == [0]

    def test_farthest_point_seeds_are_distinct(self):
        samples = lab_image([[[0, 0, 0], [0, 0, 0], [255, 255, 255], [255, 0, 0]]]).reshape(-1, 3)
        centers = farthest_point_init(samples, 3)

        assert centers.shape == (3, 3)
        assert len({tuple(np.round(c, 6)) for c in centers}) == 3

    def test_kmeans_separates_two_colors(self):
        image = np.zeros((4, 4, 3), dtype=np.uint8)
        image[:, 2:] = (255, 255, 255)
        samples = lab_image(image).reshape(-1, 3)

        centers, labels, rounds = kmeans(samples, 2, 10)

        assert centers.shape == (2, 3)
        assert 1 <= rounds <= 10
        grid = labels.reshape(4, 4)
        assert len(set(grid[:, :2].ravel().tolist())) == 1
        assert len(set(grid[:, 2:].ravel().tolist())) == 1
        assert grid[0, 0] != grid[0, 3]

    def test_cluster_means_fallback_for_empty(self):
        pixels = np.array([[10.0, 0.0, 0.0], [30.0, 0.0, 0.0]])
        labels = np.array([0, 0])
        fallback = np.array([[0.0, 0.0, 0.0], [99.0, 1.0, 2.0]])

        means = cluster_means(pixels, labels, 2, fallback=fallback)

        assert means[0].tolist() == pytest.approx([20.0, 0.0, 0.0])
        assert means[1].tolist() == [99.0, 1.0, 2.0]

    def test_training_selection_skips_masked_pixels(self):
        pixels = np.arange(12, dtype=np.float64).reshape(4, 3)
        mask = np.array([0, 1, 0, 1], dtype=np.uint8)

        chosen = select_training_pixels(pixels, mask, 1)
        assert chosen.tolist() == [pixels[1].tolist(), pixels[3].tolist()]

        fallback = select_training_pixels(pixels, np.zeros(4, dtype=np.uint8), 2)
        assert fallback.tolist() == [pixels[0].tolist(), pixels[2].tolist()]


class TestQuantize:
    """Test the full quantization pass."""

    def test_cluster_count_limited_by_samples(self):
        image = np.array([
            [[255, 0, 0], [0, 255, 0]],
            [[0, 0, 255], [255, 255, 0]],
        ], dtype=np.uint8)
        config = ProcessingConfig(color_count=10, min_region_size=1)
        result = quantize(lab_image(image), config)

        assert len(result.palette_hex) == 4
        assert len(result.threads) == 4
        assert sorted(result.labels.ravel().tolist()) == [0, 1, 2, 3]

    def test_cluster_count_capped(self):
        rng = np.random.default_rng(7)
        image = rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8)
        config = ProcessingConfig(color_count=64, min_region_size=1)

        result = quantize(lab_image(image), config)

        assert len(result.palette_hex) <= MAX_CLUSTERS

    def test_palette_hex_matches_pure_regions(self, quadrant_image):
        config = ProcessingConfig(color_count=4, min_region_size=1)
        result = quantize(lab_image(quadrant_image), config)

        assert sorted(result.palette_hex) == sorted(["#FF0000", "#00FF00", "#0000FF", "#FFFF00"])

    def test_masked_pixels_are_unlabelled(self, quadrant_image):
        mask = np.ones(16, dtype=np.uint8)
        mask[:4] = 0
        config = ProcessingConfig(color_count=4, min_region_size=1)

        result = quantize(lab_image(quadrant_image), config, mask)

        assert (result.labels[0] == -1).all()
        assert (result.labels[1:] >= 0).all()

    def test_deterministic(self):
        rng = np.random.default_rng(3)
        image = rng.integers(0, 256, size=(12, 12, 3), dtype=np.uint8)
        config = ProcessingConfig(color_count=6, min_region_size=3)

        first = quantize(lab_image(image), config)
        second = quantize(lab_image(image), config)

        assert np.array_equal(first.labels, second.labels)
        assert first.palette_hex == second.palette_hex
        assert [t.code for t in first.threads] == [t.code for t in second.threads]

    def test_empty_image(self):
        result = quantize(np.zeros((0, 0, 3)), ProcessingConfig())

        assert result.palette_hex == []
        assert result.labels.shape == (0, 0)
