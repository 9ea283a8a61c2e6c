"""
Snaptrace Image Analysis.

Characterizes an image (logo, icon, illustration, photo) and suggests tracer
parameters for it.

Usage:
    from snaptrace.analysis import ImageAnalyzer

    analysis = ImageAnalyzer.analyze(buffer)
    params = ImageAnalyzer.suggest_params(buffer, analysis)
"""

from collections import Counter
from typing import Any, Dict, Optional

import cv2
import numpy as np

from . import config
from .quantize import estimate_colors
from .types import ColorMode, PixelBuffer, TracerParams

# Pixels inspected for color statistics.
ANALYSIS_SAMPLE = 20_000

# Images whose short side is under this get 2x sampling.
SMALL_IMAGE_SIDE = 512


class ImageAnalyzer:
    """Analyze image characteristics to pick tracer settings."""

    @staticmethod
    def analyze(buffer: PixelBuffer) -> Dict[str, Any]:
        """
        Analyze image and return characteristics.

        Args:
            buffer: Source pixels

        Returns:
            Dictionary with image characteristics
        """
        h, w = buffer.height, buffer.width
        flat = buffer.data.reshape(-1, 4)
        step = max(1, flat.shape[0] // ANALYSIS_SAMPLE)
        sample = flat[::step]
        visible = sample[sample[:, 3] >= config.VISIBLE_ALPHA][:, :3]

        if len(visible) == 0:
            return {
                "width": w,
                "height": h,
                "unique_colors": 0,
                "top_10_coverage": 0.0,
                "top_50_coverage": 0.0,
                "color_variance": 0.0,
                "edge_density": 0.0,
                "is_grayscale": False,
                "is_monochrome": False,
                "transparent_ratio": 1.0,
                "image_type": "empty",
                "complexity": "simple",
            }

        color_counts = Counter(map(tuple, visible.tolist()))
        total = len(visible)
        top_10_coverage = sum(c for _, c in color_counts.most_common(10)) / total
        top_50_coverage = sum(c for _, c in color_counts.most_common(50)) / total

        # Color variance (indicates complexity)
        color_variance = float(np.std(visible, axis=0).mean())

        # Edge density (indicates detail level)
        gray = cv2.cvtColor(np.array(buffer.rgb), cv2.COLOR_RGB2GRAY)
        edges = cv2.Canny(gray, 50, 150)
        edge_density = float(np.sum(edges > 0)) / (h * w)

        spread = visible.astype(np.int16)
        is_grayscale = bool(np.max(np.abs(spread - spread.mean(axis=1, keepdims=True))) <= 4)
        tones = {tuple(c // 32) for c in visible.tolist()}
        is_monochrome = is_grayscale and len(tones) <= 2

        # A handful of flat colors is a logo even when they contrast strongly.
        if top_10_coverage > 0.95 or (color_variance < 40 and top_10_coverage > 0.85):
            image_type, complexity = "logo", "simple"
        elif color_variance < 60 and top_50_coverage > 0.90:
            image_type, complexity = "icon", "medium"
        elif color_variance < 80 and edge_density < 0.15:
            image_type, complexity = "illustration", "medium"
        else:
            image_type, complexity = "photo", "complex"

        return {
            "width": w,
            "height": h,
            "unique_colors": len(color_counts),
            "top_10_coverage": top_10_coverage,
            "top_50_coverage": top_50_coverage,
            "color_variance": color_variance,
            "edge_density": edge_density,
            "is_grayscale": is_grayscale,
            "is_monochrome": is_monochrome,
            "transparent_ratio": 1.0 - total / len(sample),
            "image_type": image_type,
            "complexity": complexity,
        }

    @staticmethod
    def suggest_params(
        buffer: PixelBuffer,
        analysis: Optional[Dict[str, Any]] = None,
        base: Optional[TracerParams] = None,
    ) -> TracerParams:
        """Tracer parameters suited to the analyzed image type."""
        analysis = analysis or ImageAnalyzer.analyze(buffer)
        base = base or TracerParams()
        estimated = estimate_colors(buffer)
        image_type = analysis["image_type"]

        changes: Dict[str, Any] = {}
        if image_type in ("logo", "icon"):
            changes.update(colors=min(estimated, 16), paths=90, corners=80, noise=8)
        elif image_type == "illustration":
            changes.update(colors=max(estimated, 16), paths=85, corners=70, noise=16)
        elif image_type == "photo":
            changes.update(colors=max(estimated, 32), paths=70, corners=50, noise=30, blur=1)
        else:
            changes.update(colors=estimated)

        if analysis["is_monochrome"]:
            changes["color_mode"] = ColorMode.binary
        elif analysis["is_grayscale"]:
            changes["color_mode"] = ColorMode.grayscale

        short_side = min(analysis["width"], analysis["height"])
        changes["sampling"] = 2 if short_side < SMALL_IMAGE_SIDE and image_type != "photo" else 1

        changes["colors"] = max(config.MIN_COLORS, min(config.MAX_COLORS, changes["colors"]))
        return base.replace(**changes)
