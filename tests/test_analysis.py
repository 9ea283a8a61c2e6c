"""
Tests for image analysis and quality measurement.
"""

import math

import numpy as np
import pytest

from conftest import solid
from snaptrace import ColorMode, ImageAnalyzer, PixelBuffer, TracerParams, compute_quality_metrics, trace
from snaptrace.quality import flatten_alpha, render_result


class TestImageAnalyzer:
    """Test image characterization."""

    def test_logo(self, white_with_square):
        analysis = ImageAnalyzer.analyze(white_with_square)
        assert analysis["image_type"] == "logo"
        assert analysis["unique_colors"] == 2
        assert analysis["is_monochrome"]

    def test_colored_logo_not_monochrome(self):
        data = np.zeros((50, 50, 4), dtype=np.uint8)
        data[:, :25] = (255, 0, 0, 255)
        data[:, 25:] = (0, 0, 255, 255)
        analysis = ImageAnalyzer.analyze(PixelBuffer(data))
        assert not analysis["is_grayscale"]
        assert not analysis["is_monochrome"]

    def test_noisy_image_is_photo(self):
        rng = np.random.default_rng(3)
        # Two far-apart tones, each jittered so no color repeats much
        data = (rng.integers(0, 2, size=(64, 64, 4)) * 225 + rng.integers(0, 31, size=(64, 64, 4))).astype(np.uint8)
        data[:, :, 3] = 255
        assert ImageAnalyzer.analyze(PixelBuffer(data))["image_type"] == "photo"

    def test_transparent(self, transparent_image):
        analysis = ImageAnalyzer.analyze(transparent_image)
        assert analysis["image_type"] == "empty"
        assert analysis["transparent_ratio"] == 1.0

    def test_suggest_params(self, white_with_square):
        params = ImageAnalyzer.suggest_params(white_with_square)
        assert params.color_mode == ColorMode.binary
        assert params.sampling == 2
        assert 2 <= params.colors <= 16


class TestQuality:
    """Test rasterized comparison of results and sources."""

    def test_flatten_alpha(self):
        out = flatten_alpha(solid(2, 2, (0, 0, 0), alpha=0))
        assert out[0, 0].tolist() == [255, 255, 255]

    def test_render_square(self, white_with_square):
        result = trace(white_with_square, TracerParams(colors=2))
        canvas = render_result(result)
        assert canvas.shape == (100, 100, 3)
        assert canvas[50, 50].tolist() == [0, 0, 0]
        assert canvas[5, 5].tolist() == [255, 255, 255]

    def test_metrics_for_good_trace(self, white_with_square):
        result = trace(white_with_square, TracerParams(colors=2))
        metrics = compute_quality_metrics(white_with_square, result)
        assert metrics["ssim"] > 0.9
        assert metrics["psnr"] > 20 or math.isinf(metrics["psnr"])
        assert metrics["path_count"] == 1
        assert metrics["file_size"] == len(result.markup.encode("utf-8"))

    def test_identical_render_is_infinite_psnr(self):
        result = trace(solid(20, 20, (255, 255, 255)))
        metrics = compute_quality_metrics(solid(20, 20, (255, 255, 255)), result)
        assert metrics["psnr"] == pytest.approx(float("inf"))
        assert metrics["ssim"] == pytest.approx(1.0)
