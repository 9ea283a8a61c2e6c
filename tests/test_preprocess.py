"""
Tests for upscale, sharpen, blur and color mode reduction.
"""

import threading

import numpy as np
import pytest

from conftest import paint, solid
from snaptrace import CancellationError, Checkpoint, ColorMode, InputError, PixelBuffer
from snaptrace.preprocess import blur, prepare, reduce_color_mode, sharpen, upscale


class TestUpscale:
    """Test bicubic upscaling."""

    def test_identity(self, gradient_image):
        assert upscale(gradient_image, 1) is gradient_image

    def test_dimensions(self, gradient_image):
        out = upscale(gradient_image, 4)
        assert (out.width, out.height) == (256, 192)

    def test_bad_factor(self, gradient_image):
        with pytest.raises(InputError):
            upscale(gradient_image, 0)

    def test_prepare_sharpens_upscaled(self, white_with_square):
        """Test that sampling 2 returns a sharpened 2x buffer."""
        prepared = prepare(white_with_square, 2)
        assert (prepared.width, prepared.height) == (200, 200)
        # Flat regions are unaffected by the Laplacian
        assert prepared.data[100, 100, :3].tolist() == [0, 0, 0]
        assert prepared.data[5, 5, :3].tolist() == [255, 255, 255]


class TestSharpen:
    """Test Laplacian sharpening."""

    def test_zero_strength_is_noop(self, gradient_image):
        assert sharpen(gradient_image, 0.0) is gradient_image

    def test_edges_gain_contrast(self):
        img = paint(solid(9, 9, (100, 100, 100)), 4, 0, 9, 9, (150, 150, 150))
        out = sharpen(img, 1.0)
        # Dark side of the edge gets darker, bright side brighter
        assert out.data[4, 3, 0] < 100
        assert out.data[4, 4, 0] > 150
        # Border rows pass through
        assert out.data[0, 3, 0] == 100

    def test_alpha_untouched(self):
        img = paint(solid(5, 5, (10, 10, 10), alpha=77), 2, 2, 3, 3, (200, 200, 200))
        out = sharpen(img, 0.5)
        assert out.alpha[0, 0] == 77


class TestBlur:
    """Test separable box blur."""

    def test_radius_zero_copies(self, gradient_image):
        out = blur(gradient_image, 0)
        assert out is not gradient_image
        assert np.array_equal(out.data, gradient_image.data)

    def test_single_pixel_spreads(self):
        """Test a lone white pixel spread over a 3x3 window."""
        img = paint(solid(11, 11, (0, 0, 0)), 5, 5, 6, 6, (255, 255, 255))
        out = blur(img, 1)
        assert out.data[5, 5, 0] == 28
        assert out.data[4, 4, 0] == 28
        assert out.data[3, 5, 0] == 0

    def test_uniform_image_unchanged(self):
        img = solid(30, 20, (40, 80, 120))
        assert np.array_equal(blur(img, 3).data, img.data)

    def test_negative_radius(self, gradient_image):
        with pytest.raises(InputError):
            blur(gradient_image, -1)

    def test_checkpoint_cancels(self, gradient_image):
        """Test that a set cancel event aborts at the next checkpoint."""
        event = threading.Event()
        event.set()
        with pytest.raises(CancellationError):
            blur(gradient_image, 2, Checkpoint(cancel_event=event))


class TestColorMode:
    """Test grayscale and binary reduction."""

    def test_color_is_identity(self, gradient_image):
        assert reduce_color_mode(gradient_image, ColorMode.color) is gradient_image

    def test_grayscale_luma(self):
        out = reduce_color_mode(solid(2, 2, (255, 0, 0)), ColorMode.grayscale)
        assert out.data[0, 0, :3].tolist() == [76, 76, 76]

    def test_binary_is_black_and_white(self, gradient_image):
        out = reduce_color_mode(gradient_image, "binary")
        values = np.unique(out.rgb)
        assert set(values.tolist()) <= {0, 255}
        assert len(values) == 2

    def test_progress_reported(self, gradient_image):
        stages = []
        reduce_color_mode(gradient_image, ColorMode.grayscale,
                          Checkpoint(on_progress=lambda s, f: stages.append(s)))
        assert stages and set(stages) == {"color_mode"}
