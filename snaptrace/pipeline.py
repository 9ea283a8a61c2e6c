"""
Snaptrace Pipeline.

Runs the stages in order for one image:
    prepare (precache) -> blur -> color mode -> quantize -> contour
    -> paths -> palette -> markup

A ``PipelineContext`` owns the per-image caches. Build one per loaded image
and close it with the image; worker processes each build their own.

Usage:
    from snaptrace import PixelBuffer, TracerParams, trace

    result = trace(PixelBuffer.from_image(img), TracerParams(colors=8))
    print(result.markup)
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Hashable, List, Optional, Protocol, Tuple

import numpy as np

from . import config
from .analysis import ImageAnalyzer
from .contour import trace_labels
from .output import build_svg
from .paths import build_compound_path
from .precache import SamplingPrecache
from .preprocess import blur, reduce_color_mode
from .progress import Checkpoint, ensure
from .quantize import ALL_EDGES, Edges, kmeans, map_to_palette, refine_labels
from .types import (
    PaletteItem,
    PixelBuffer,
    QuantizeResult,
    TracerParams,
    TracerResult,
    VectorPath,
    hex_to_rgb,
)

logger = logging.getLogger(__name__)


# ============================================================================
# CACHES
# ============================================================================

class LRUCache:
    """Small thread-safe LRU map."""

    def __init__(self, limit: int):
        self.limit = limit
        self._items: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any:
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
                self.hits += 1
                return self._items[key]
            self.misses += 1
            return None

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._items[key] = value
            self._items.move_to_end(key)
            while len(self._items) > self.limit:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class PipelineContext:
    """
    Per-image cache owner.

    - preprocess cache: blurred + color-reduced buffers keyed by
      (identity, sampling, blur, color mode)
    - k-means cache: raw clustering keyed by the preprocess key plus colors
    - precache: prepared buffers per sampling level
    """

    def __init__(
        self,
        precache: Optional[SamplingPrecache] = None,
        preprocess_limit: int = config.PREPROCESS_CACHE_LIMIT,
        kmeans_limit: int = config.KMEANS_CACHE_LIMIT,
    ):
        self._own_precache = precache is None
        self.precache = precache or SamplingPrecache()
        self.preprocess_cache = LRUCache(preprocess_limit)
        self.kmeans_cache = LRUCache(kmeans_limit)

    def prepared(self, source: PixelBuffer, sampling: int, checkpoint: Optional[Checkpoint] = None) -> PixelBuffer:
        """Upscaled buffer for ``sampling``: precache hit, in-flight wait or fresh compute."""
        if sampling == 1:
            return source
        cached = self.precache.get(source, sampling)
        if cached is not None:
            return cached
        ensure(checkpoint)("prepare", 0.0)
        return self.precache.get_or_compute(source, sampling)

    def processed(
        self,
        key: str,
        prepared: PixelBuffer,
        params: TracerParams,
        scale: int,
        checkpoint: Optional[Checkpoint] = None,
    ) -> PixelBuffer:
        """Blurred and color-reduced buffer, cached."""
        cache_key = (key, scale, params.blur, params.color_mode.value)
        cached = self.preprocess_cache.get(cache_key)
        if cached is not None:
            return cached
        buffer = blur(prepared, params.blur * scale, checkpoint)
        buffer = reduce_color_mode(buffer, params.color_mode, checkpoint)
        self.preprocess_cache.put(cache_key, buffer)
        return buffer

    def clustered(
        self,
        key: str,
        processed: PixelBuffer,
        params: TracerParams,
        scale: int,
        checkpoint: Optional[Checkpoint] = None,
    ) -> QuantizeResult:
        """Raw k-means result, cached. Callers must not mutate its labels."""
        cache_key = (key, scale, params.blur, params.color_mode.value, params.effective_colors)
        cached = self.kmeans_cache.get(cache_key)
        if cached is not None:
            return cached
        result = kmeans(processed, params.effective_colors, checkpoint)
        result.labels.flags.writeable = False
        self.kmeans_cache.put(cache_key, result)
        return result

    def cache_info(self) -> Dict[str, int]:
        return {
            "preprocess_entries": len(self.preprocess_cache),
            "kmeans_entries": len(self.kmeans_cache),
            "kmeans_hits": self.kmeans_cache.hits,
        }

    def clear(self) -> None:
        self.preprocess_cache.clear()
        self.kmeans_cache.clear()
        self.precache.clear()

    def close(self) -> None:
        self.preprocess_cache.clear()
        self.kmeans_cache.clear()
        if self._own_precache:
            self.precache.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# ============================================================================
# RESULT ASSEMBLY
# ============================================================================

def _fill_groups(quantized: QuantizeResult, params: TracerParams) -> "OrderedDict[str, List[int]]":
    """Labels per fill color; palette lock can merge several labels into one color."""
    groups: "OrderedDict[str, List[int]]" = OrderedDict()
    counts = quantized.counts()
    for idx, centroid in enumerate(quantized.centroids):
        if counts[idx] == 0:
            continue
        fill = centroid.hex
        if params.palette:
            fill = map_to_palette(fill, params.palette)
        groups.setdefault(fill, []).append(idx)
    return groups


def assemble(
    quantized: QuantizeResult,
    params: TracerParams,
    scale: float,
    source_size: Tuple[int, int],
    checkpoint: Optional[Checkpoint] = None,
    id_prefix: str = "",
    build_markup: bool = True,
) -> TracerResult:
    """Contour, path building and palette over a refined label map."""
    checkpoint = ensure(checkpoint)
    width, height = source_size
    groups = _fill_groups(quantized, params)
    if not groups:
        return _empty(width, height, build_markup)

    # Merge every label of a group into its first label before tracing.
    lut = np.arange(256, dtype=np.uint8)
    for members in groups.values():
        lut[members] = members[0]
    labels = lut[quantized.labels]

    counts = quantized.counts()
    total = int(np.count_nonzero(quantized.labels != config.BACKGROUND_SENTINEL))
    loops_by_label = trace_labels(
        labels, [m[0] for m in groups.values()], params.scaled_noise, checkpoint
    )

    shapes = []
    for fill, members in groups.items():
        checkpoint("paths", len(shapes) / len(groups))
        d = build_compound_path(loops_by_label[members[0]], params, scale)
        if d:
            shapes.append((int(counts[members].sum()), fill, d))
    shapes.sort(key=lambda s: -s[0])

    paths = []
    palette = []
    for i, (count, fill, d) in enumerate(shapes):
        paths.append(VectorPath(
            id=f"{id_prefix}shape-{i}",
            path_data=d,
            fill_color=fill,
            stroke_color=fill,
            stroke_width=config.STROKE_WIDTH,
        ))
        r, g, b = hex_to_rgb(fill)
        palette.append(PaletteItem(fill, r, g, b, count, count / total if total else 0.0))

    markup = build_svg(paths, width, height) if build_markup else None
    return TracerResult(paths=paths, palette=palette, markup=markup, width=width, height=height)


def _empty(width: int, height: int, build_markup: bool) -> TracerResult:
    result = TracerResult.empty(width, height)
    if build_markup:
        result.markup = build_svg([], width, height)
    return result


# ============================================================================
# ENTRY POINTS
# ============================================================================

def trace_prepared(
    prepared: PixelBuffer,
    params: TracerParams,
    scale: int,
    source_size: Optional[Tuple[int, int]] = None,
    context: Optional[PipelineContext] = None,
    checkpoint: Optional[Checkpoint] = None,
    id_prefix: str = "",
    build_markup: bool = True,
    cache_key: Optional[str] = None,
    edges: Edges = ALL_EDGES,
) -> TracerResult:
    """
    Trace an already upscaled buffer.

    Args:
        prepared: Buffer at processing resolution
        params: Tracer parameters
        scale: Processing pixels per source pixel
        source_size: (width, height) of the source region; defaults to
            the prepared size divided by scale
        cache_key: Identity used for cache keys (defaults to the
            prepared buffer's own identity)
        edges: Sides of ``prepared`` that are real image borders, as
            (top, bottom, left, right)

    Returns:
        TracerResult in source pixel space
    """
    if source_size is None:
        source_size = (prepared.width // scale, prepared.height // scale)
    own_context = context is None
    context = context or PipelineContext()
    try:
        key = cache_key or prepared.identity
        processed = context.processed(key, prepared, params, scale, checkpoint)
        base = context.clustered(key, processed, params, scale, checkpoint)
        if not base.centroids:
            logger.debug("No visible pixels, returning an empty result")
            return _empty(source_size[0], source_size[1], build_markup)
        quantized = refine_labels(processed, base, params, checkpoint, edges)
        return assemble(quantized, params, scale, source_size, checkpoint, id_prefix, build_markup)
    finally:
        if own_context:
            context.close()


def trace(
    buffer: PixelBuffer,
    params: Optional[TracerParams] = None,
    context: Optional[PipelineContext] = None,
    checkpoint: Optional[Checkpoint] = None,
    build_markup: bool = True,
) -> TracerResult:
    """Trace a source image into flat-colored vector paths."""
    params = params or TracerParams()
    own_context = context is None
    context = context or PipelineContext()
    try:
        prepared = context.prepared(buffer, params.sampling, checkpoint)
        result = trace_prepared(
            prepared, params, params.sampling, (buffer.width, buffer.height),
            context=context, checkpoint=checkpoint,
            build_markup=build_markup, cache_key=buffer.identity,
        )
        logger.info("Traced %dx%d: %d paths, %d colors",
                    buffer.width, buffer.height, len(result.paths), len(result.palette))
        return result
    finally:
        if own_context:
            context.close()


def auto_params(buffer: PixelBuffer, base: Optional[TracerParams] = None) -> TracerParams:
    """Parameters suggested from an analysis of the image."""
    analysis = ImageAnalyzer.analyze(buffer)
    params = ImageAnalyzer.suggest_params(buffer, analysis, base)
    logger.info("Auto params for %s image: colors=%d sampling=%d mode=%s",
                analysis["image_type"], params.colors, params.sampling, params.color_mode.value)
    return params


# ============================================================================
# BACKENDS
# ============================================================================

class Backend(Protocol):
    """Anything that can trace a buffer; the native backend plugs in here."""

    def trace(self, buffer: PixelBuffer, params: TracerParams) -> TracerResult:
        ...


class PythonBackend:
    """The built-in numpy/OpenCV pipeline."""

    name = "python"

    def __init__(self, context: Optional[PipelineContext] = None):
        self.context = context or PipelineContext()

    def trace(
        self,
        buffer: PixelBuffer,
        params: TracerParams,
        checkpoint: Optional[Checkpoint] = None,
    ) -> TracerResult:
        return trace(buffer, params, self.context, checkpoint)

    def close(self) -> None:
        self.context.close()
