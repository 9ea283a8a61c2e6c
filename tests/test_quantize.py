"""
Tests for clustering, label filters and background handling.
"""

import numpy as np
import pytest

from conftest import paint, solid
from snaptrace import TracerParams
from snaptrace.config import BACKGROUND_SENTINEL
from snaptrace.quantize import (
    SeededRandom,
    denoise,
    denoise_threshold,
    detect_background_color,
    estimate_colors,
    extract_palette,
    kmeans,
    majority_filter,
    map_to_palette,
    quantize,
    sample_budget,
    suppress_background,
)


@pytest.fixture
def two_tone():
    """Left half red, right half blue."""
    return paint(solid(40, 20, (255, 0, 0)), 20, 0, 40, 20, (0, 0, 255))


class TestKMeans:
    """Test seeded k-means."""

    def test_seeded_random_is_deterministic(self):
        a, b = SeededRandom(7), SeededRandom(7)
        assert [a.next() for _ in range(5)] == [b.next() for _ in range(5)]

    def test_sample_budget(self):
        assert sample_budget(100) == 4000
        assert sample_budget(500_000) == 3000
        assert sample_budget(4_000_000) == 2000

    def test_finds_both_colors(self, two_tone):
        result = kmeans(two_tone, 8)
        hexes = sorted(c.hex for c in result.centroids)
        assert hexes == ["#0000ff", "#ff0000"]
        assert result.labels[0, 0] != result.labels[0, 39]

    def test_deterministic(self, gradient_image):
        """Test that repeated runs give identical clusters."""
        a = kmeans(gradient_image, 6)
        b = kmeans(gradient_image, 6)
        assert [c.rgb for c in a.centroids] == [c.rgb for c in b.centroids]
        assert np.array_equal(a.labels, b.labels)

    def test_k_clamped_to_distinct_colors(self):
        result = kmeans(solid(10, 10, (1, 2, 3)), 16)
        assert len(result.centroids) == 1
        assert np.all(result.labels == 0)

    def test_transparent_pixels_get_sentinel(self):
        img = paint(solid(10, 10, (0, 0, 0), alpha=0), 0, 0, 5, 10, (9, 9, 9))
        result = kmeans(img, 4)
        assert np.all(result.labels[:, 5:] == BACKGROUND_SENTINEL)
        assert np.all(result.labels[:, :5] == 0)

    def test_fully_transparent(self, transparent_image):
        result = kmeans(transparent_image, 4)
        assert result.centroids == []
        assert np.all(result.labels == BACKGROUND_SENTINEL)

    def test_label_count(self, gradient_image):
        result = kmeans(gradient_image, 6)
        assert len(result.centroids) == 6
        assert result.labels.max() < 6
        assert result.counts().sum() == gradient_image.pixel_count


class TestLabelFilters:
    """Test the majority filter and denoise pass."""

    def test_majority_filter_removes_isolated_pixel(self):
        labels = np.zeros((7, 7), dtype=np.uint8)
        labels[3, 3] = 1
        out = majority_filter(labels, iterations=1)
        assert np.all(out == 0)

    def test_majority_filter_keeps_edges(self):
        """Test that a straight boundary between two regions survives."""
        labels = np.zeros((8, 8), dtype=np.uint8)
        labels[:, 4:] = 1
        assert np.array_equal(majority_filter(labels), labels)

    def test_majority_filter_skips_border(self):
        labels = np.zeros((5, 5), dtype=np.uint8)
        labels[0, 2] = 1
        assert majority_filter(labels)[0, 2] == 1

    def test_denoise_threshold(self):
        assert denoise_threshold(20) == 6
        assert denoise_threshold(51) == 5

    def test_denoise_zero_is_noop(self):
        labels = np.zeros((5, 5), dtype=np.uint8)
        labels[2, 2] = 3
        assert denoise(labels, 0)[2, 2] == 3
        assert denoise(labels, 10)[2, 2] == 0


class TestBackground:
    """Test background detection and suppression."""

    def test_detect_border_color(self, white_with_square):
        assert detect_background_color(white_with_square) == (255, 255, 255)

    def test_detect_ignores_transparent(self, transparent_image):
        assert detect_background_color(transparent_image) is None

    def test_smart_keeps_enclosed_region(self):
        """Test that an enclosed background-colored region survives smart mode."""
        labels = np.zeros((9, 9), dtype=np.uint8)
        labels[2:7, 2:7] = 1
        labels[4, 4] = 0
        smart = suppress_background(labels, [0], smart=True)
        assert smart[0, 0] == BACKGROUND_SENTINEL
        assert smart[4, 4] == 0
        blanket = suppress_background(labels, [0], smart=False)
        assert blanket[4, 4] == BACKGROUND_SENTINEL
        assert blanket[3, 3] == 1

    def test_flood_only_from_image_edges(self):
        """Test that a region touching only a cut side is kept."""
        labels = np.ones((6, 6), dtype=np.uint8)
        labels[2:4, 4:] = 0
        labels[0, :] = 0
        assert suppress_background(labels, [0], smart=True)[2, 5] == BACKGROUND_SENTINEL
        kept = suppress_background(labels, [0], smart=True, edges=(True, True, True, False))
        assert kept[2, 5] == 0
        assert kept[0, 0] == BACKGROUND_SENTINEL
        assert (suppress_background(labels, [0], smart=True, edges=(False,) * 4) == labels).all()

    def test_quantize_drops_white_background(self, white_with_square):
        result = quantize(white_with_square, TracerParams(colors=4))
        assert result.labels[0, 0] == BACKGROUND_SENTINEL
        label = result.labels[50, 50]
        assert result.centroids[label].hex == "#000000"

    def test_explicit_background_color(self, two_tone):
        params = TracerParams(colors=2, background_color="#0000ff", smart_background=False)
        result = quantize(two_tone, params)
        assert np.all(result.labels[:, 25:] == BACKGROUND_SENTINEL)
        assert np.all(result.labels[:, :15] != BACKGROUND_SENTINEL)

    def test_keep_background(self, white_with_square):
        result = quantize(white_with_square, TracerParams(colors=4, ignore_background=False))
        assert not np.any(result.labels == BACKGROUND_SENTINEL)


class TestPaletteHelpers:
    """Test color estimation and palette lock."""

    def test_estimate_floor(self):
        assert estimate_colors(solid(10, 10, (5, 5, 5))) == 4

    def test_estimate_transparent(self, transparent_image):
        assert estimate_colors(transparent_image) == 2

    def test_extract_palette_sorted(self):
        img = paint(solid(10, 10, (255, 255, 255)), 0, 0, 10, 3, (0, 0, 0))
        count, items = extract_palette(img)
        assert count == 4
        assert [i.hex for i in items] == ["#ffffff", "#000000"]
        assert items[0].ratio == pytest.approx(0.7)

    def test_map_to_palette(self):
        assert map_to_palette("#f01010", ["#0000ff", "#ff0000"]) == "#ff0000"
        assert map_to_palette("#123456", ["#000000"]) == "#000000"
