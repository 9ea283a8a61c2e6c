"""
Snaptrace Quality Measurement.

Rasterizes a traced result with OpenCV and compares it to the source image:
SSIM, PSNR and mean absolute error, plus output size statistics.

Usage:
    from snaptrace.quality import compute_quality_metrics

    metrics = compute_quality_metrics(buffer, result)
    print(f"SSIM: {metrics['ssim']:.4f}")
"""

from typing import Dict, Tuple

import cv2
import numpy as np
from skimage.metrics import peak_signal_noise_ratio as psnr
from skimage.metrics import structural_similarity as ssim

from .paths import polygon_from_path
from .types import PixelBuffer, TracerResult, hex_to_rgb

# Fixed-point bits used for sub-pixel polygon filling.
SUBPIXEL_SHIFT = 4


def flatten_alpha(buffer: PixelBuffer, background: Tuple[int, int, int] = (255, 255, 255)) -> np.ndarray:
    """Composite an RGBA buffer over a solid background, returning RGB uint8."""
    rgb = buffer.rgb.astype(np.float32)
    alpha = buffer.alpha.astype(np.float32)[..., None] / 255.0
    bg = np.array(background, dtype=np.float32)
    return np.clip(np.rint(rgb * alpha + bg * (1.0 - alpha)), 0, 255).astype(np.uint8)


def render_result(
    result: TracerResult,
    width: int = None,
    height: int = None,
    background: Tuple[int, int, int] = (255, 255, 255),
) -> np.ndarray:
    """
    Rasterize paths in draw order.

    Each compound path is filled as one even-odd polygon set, so holes stay
    open. Strokes are ignored.
    """
    width = width or result.width
    height = height or result.height
    canvas = np.empty((height, width, 3), dtype=np.uint8)
    canvas[:] = background
    factor = 1 << SUBPIXEL_SHIFT

    for path in result.paths:
        polygons = []
        for poly in polygon_from_path(path.path_data):
            if len(poly) < 3:
                continue
            pts = poly * path.scale + np.array([path.offset_x, path.offset_y])
            # Path space puts pixel centers at i + 0.5; fillPoly puts them at i.
            pts = np.rint((pts - 0.5) * factor).astype(np.int32)
            polygons.append(pts.reshape(-1, 1, 2))
        if polygons:
            cv2.fillPoly(canvas, polygons, hex_to_rgb(path.fill_color), lineType=cv2.LINE_8, shift=SUBPIXEL_SHIFT)

    return canvas


def compute_quality_metrics(source: PixelBuffer, result: TracerResult) -> Dict[str, float]:
    """
    Compare a traced result against its source image.

    Args:
        source: Original pixels (alpha composited over white)
        result: Traced result in source pixel space

    Returns:
        Dictionary with ssim, psnr, mae, path_count and file_size
    """
    original = flatten_alpha(source)
    rendered = render_result(result, source.width, source.height)

    min_side = min(source.width, source.height)
    if min_side >= 7:
        ssim_value = float(ssim(original, rendered, channel_axis=2, data_range=255))
    else:
        ssim_value = float(np.array_equal(original, rendered))

    if np.array_equal(original, rendered):
        psnr_value = float('inf')
    else:
        psnr_value = float(psnr(original, rendered, data_range=255))

    mae = float(np.mean(np.abs(original.astype(float) - rendered.astype(float))))

    return {
        "ssim": ssim_value,
        "psnr": psnr_value,
        "mae": mae,
        "path_count": len(result.paths),
        "file_size": len(result.markup.encode('utf-8')) if result.markup else 0,
    }
