"""
Snaptrace Preprocessing Module.

Pure pixel-buffer transforms run before clustering:
1. Upscale - bicubic resampling for sub-pixel precision
2. Sharpen - Laplacian sharpening to counter upscale blur
3. Blur - separable box blur
4. Color mode - grayscale or binary reduction

Every function returns a new PixelBuffer and calls the checkpoint between
row chunks.

Usage:
    from snaptrace.preprocess import prepare, blur

    prepared = prepare(buffer, sampling=2)
"""

from typing import Optional

import cv2
import numpy as np

from . import config
from .errors import InputError
from .progress import Checkpoint, ensure
from .types import ColorMode, PixelBuffer


# ============================================================================
# UPSCALE / SHARPEN
# ============================================================================

def upscale(buffer: PixelBuffer, factor: int, checkpoint: Optional[Checkpoint] = None) -> PixelBuffer:
    """
    Resample to factor x width/height with bicubic interpolation.

    Args:
        buffer: Source pixels
        factor: Integer upscale factor (1 = identity)

    Returns:
        Upscaled buffer
    """
    if factor < 1 or int(factor) != factor:
        raise InputError(f"Upscale factor must be a positive integer, got {factor}")
    if factor == 1:
        return buffer
    checkpoint = ensure(checkpoint)
    checkpoint("upscale", 0.0)
    new_size = (buffer.width * factor, buffer.height * factor)
    scaled = cv2.resize(np.array(buffer.data), new_size, interpolation=cv2.INTER_CUBIC)
    checkpoint("upscale", 1.0)
    return PixelBuffer(scaled)


def sharpen(buffer: PixelBuffer, strength: float, checkpoint: Optional[Checkpoint] = None) -> PixelBuffer:
    """
    Laplacian sharpening blended with the original.

    Kernel: center 5, N/S/E/W -1. The sharpened value is clamped to
    [0, 255] and mixed back in by ``strength``. Border pixels and alpha
    pass through unchanged.
    """
    if strength <= 0 or buffer.width < 3 or buffer.height < 3:
        return buffer
    checkpoint = ensure(checkpoint)
    src = buffer.data.astype(np.float32)
    out = np.array(buffer.data)
    h = buffer.height

    for start in range(1, h - 1, config.ROW_CHUNK):
        checkpoint("sharpen", start / h)
        end = min(h - 1, start + config.ROW_CHUNK)
        center = src[start:end, 1:-1, :3]
        neighbors = (
            src[start - 1:end - 1, 1:-1, :3]
            + src[start + 1:end + 1, 1:-1, :3]
            + src[start:end, :-2, :3]
            + src[start:end, 2:, :3]
        )
        sharp = np.clip(5.0 * center - neighbors, 0, 255)
        mixed = center * (1.0 - strength) + sharp * strength
        out[start:end, 1:-1, :3] = np.clip(np.rint(mixed), 0, 255).astype(np.uint8)

    return PixelBuffer(out)


def prepare(buffer: PixelBuffer, sampling: int, checkpoint: Optional[Checkpoint] = None) -> PixelBuffer:
    """Upscale and sharpen for a sampling level. This is what the precache stores."""
    scaled = upscale(buffer, sampling, checkpoint)
    strength = config.SHARPEN_STRENGTH.get(sampling, 0.0)
    if sampling > 1 and strength > 0:
        scaled = sharpen(scaled, strength, checkpoint)
    return scaled


# ============================================================================
# BLUR
# ============================================================================

def _box_sum(values: np.ndarray, radius: int, axis: int) -> np.ndarray:
    """Windowed mean along ``axis`` with windows truncated at the edges."""
    n = values.shape[axis]
    pad = [(0, 0)] * values.ndim
    pad[axis] = (1, 0)
    cumsum = np.pad(np.cumsum(values, axis=axis, dtype=np.float64), pad)

    idx = np.arange(n)
    hi = np.minimum(n - 1, idx + radius) + 1
    lo = np.maximum(0, idx - radius)
    total = np.take(cumsum, hi, axis=axis) - np.take(cumsum, lo, axis=axis)

    shape = [1] * values.ndim
    shape[axis] = n
    counts = (hi - lo).reshape(shape)
    return total / counts


def blur(buffer: PixelBuffer, radius: int, checkpoint: Optional[Checkpoint] = None) -> PixelBuffer:
    """
    Separable box blur: horizontal pass, then vertical pass.

    Args:
        buffer: Source pixels
        radius: Window radius in pixels (0 = copy)

    Returns:
        Blurred buffer (alpha preserved)
    """
    radius = int(radius)
    if radius < 0:
        raise InputError(f"Blur radius must be >= 0, got {radius}")
    if radius == 0:
        return PixelBuffer(buffer.data)

    checkpoint = ensure(checkpoint)
    rgb = buffer.data[:, :, :3].astype(np.float64)
    h = buffer.height

    # Horizontal pass, rounded like the 8-bit intermediate it replaces
    temp = np.empty_like(rgb)
    for start in range(0, h, config.ROW_CHUNK):
        checkpoint("blur", 0.5 * start / h)
        end = min(h, start + config.ROW_CHUNK)
        temp[start:end] = np.rint(_box_sum(rgb[start:end], radius, axis=1))

    checkpoint("blur", 0.5)
    vertical = _box_sum(temp, radius, axis=0)
    checkpoint("blur", 1.0)

    out = np.array(buffer.data)
    out[:, :, :3] = np.clip(np.rint(vertical), 0, 255).astype(np.uint8)
    return PixelBuffer(out)


# ============================================================================
# COLOR MODE
# ============================================================================

def luma(rgb: np.ndarray) -> np.ndarray:
    """Rec. 601 luma of an (..., 3) array."""
    wr, wg, wb = config.LUMA_WEIGHTS
    rgb = rgb.astype(np.float32)
    return rgb[..., 0] * wr + rgb[..., 1] * wg + rgb[..., 2] * wb


def binary_threshold(buffer: PixelBuffer) -> float:
    """Mean luma of a sparse sample of visible pixels."""
    flat = buffer.data.reshape(-1, 4)
    step = max(1, flat.shape[0] // config.BINARY_SAMPLE_SIZE)
    sample = flat[::step]
    sample = sample[sample[:, 3] >= config.VISIBLE_ALPHA]
    if sample.shape[0] == 0:
        return 128.0
    return float(luma(sample[:, :3]).mean())


def reduce_color_mode(
    buffer: PixelBuffer,
    mode: ColorMode,
    checkpoint: Optional[Checkpoint] = None,
) -> PixelBuffer:
    """
    Reduce colors before clustering.

    - color: identity
    - grayscale: RGB replaced by luma
    - binary: luma thresholded at the sampled mean, pure black or white
    """
    mode = ColorMode(mode)
    if mode == ColorMode.color:
        return buffer

    checkpoint = ensure(checkpoint)
    out = np.array(buffer.data)
    threshold = binary_threshold(buffer) if mode == ColorMode.binary else None
    h = buffer.height

    for start in range(0, h, config.ROW_CHUNK):
        checkpoint("color_mode", start / h)
        end = min(h, start + config.ROW_CHUNK)
        y = luma(out[start:end, :, :3])
        if threshold is None:
            value = np.clip(np.rint(y), 0, 255).astype(np.uint8)
        else:
            value = np.where(y >= threshold, 255, 0).astype(np.uint8)
        out[start:end, :, :3] = value[..., None]

    return PixelBuffer(out)
