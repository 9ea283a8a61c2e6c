"""
Shared fixtures for the snaptrace test suite.
"""

import numpy as np
import pytest

from snaptrace import PixelBuffer


def solid(width, height, color, alpha=255):
    """Buffer filled with one RGB color."""
    data = np.zeros((height, width, 4), dtype=np.uint8)
    data[:, :, :3] = color
    data[:, :, 3] = alpha
    return PixelBuffer(data)


def paint(buffer, x0, y0, x1, y1, color):
    """Copy of ``buffer`` with the rectangle [x0, x1) x [y0, y1) filled."""
    data = np.array(buffer.data)
    data[y0:y1, x0:x1, :3] = color
    data[y0:y1, x0:x1, 3] = 255
    return PixelBuffer(data)


@pytest.fixture
def white_with_square():
    """100x100 white image with a black 60x60 square."""
    return paint(solid(100, 100, (255, 255, 255)), 20, 20, 80, 80, (0, 0, 0))


@pytest.fixture
def eye_image():
    """White background, black square, white 'eye' enclosed by the square."""
    img = paint(solid(100, 100, (255, 255, 255)), 20, 20, 80, 80, (0, 0, 0))
    return paint(img, 40, 40, 60, 60, (255, 255, 255))


@pytest.fixture
def gradient_image():
    """64x48 RGB gradient."""
    ys, xs = np.mgrid[0:48, 0:64]
    data = np.zeros((48, 64, 4), dtype=np.uint8)
    data[:, :, 0] = xs * 4
    data[:, :, 1] = ys * 5
    data[:, :, 2] = 128
    data[:, :, 3] = 255
    return PixelBuffer(data)


@pytest.fixture
def transparent_image():
    return solid(20, 20, (0, 0, 0), alpha=0)
