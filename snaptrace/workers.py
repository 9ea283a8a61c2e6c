"""
Snaptrace Worker Pool.

Shards one large prepared image into strips, traces each strip in its own
process and merges the partial results:

- landscape images are cut along x, portrait images along y
- each strip holds at least ``min_chunk_pixels`` pixels and there are never
  more strips than workers
- path offsets are moved by the strip origin divided by the sampling scale
- palettes are merged by summing counts per hex

Every worker process builds its own ``PipelineContext``; nothing is shared
between processes. When the process pool cannot start, the failure is
reported through ``on_status`` and strips run sequentially in-process.
"""

import concurrent.futures
import logging
import math
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from . import config
from .config import PoolOptions
from .errors import ResourceError, WorkerError
from .output import build_svg
from .pipeline import PipelineContext, trace_prepared
from .quantize import ALL_EDGES, Edges, detect_background_color
from .types import PaletteItem, PixelBuffer, TracerParams, TracerResult, rgb_to_hex

logger = logging.getLogger(__name__)


# ============================================================================
# STRIP PLANNING
# ============================================================================

@dataclass(frozen=True)
class Strip:
    index: int
    x: int
    y: int
    width: int
    height: int

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def edges(self, width: int, height: int) -> Edges:
        """Which sides (top, bottom, left, right) lie on the border of a width x height image."""
        return (
            self.y == 0,
            self.y + self.height == height,
            self.x == 0,
            self.x + self.width == width,
        )


def plan_strips(
    width: int,
    height: int,
    workers: int,
    min_chunk_pixels: int = config.MIN_CHUNK_PIXELS,
    align: int = 1,
) -> List[Strip]:
    """
    Split an image into strips.

    Args:
        width, height: Image size in processing pixels
        workers: Upper bound on the strip count
        min_chunk_pixels: Minimum pixels per strip
        align: Strip sizes are multiples of this (the sampling scale), so
            origins map to whole source pixels

    Returns:
        Strips covering the image without overlap
    """
    landscape = width >= height
    length = width if landscape else height
    units = max(1, length // align)
    count = max(1, min(workers, math.ceil(width * height / max(1, min_chunk_pixels)), units))

    per, extra = divmod(units, count)
    strips = []
    start = 0
    for i in range(count):
        size = (per + (1 if i < extra else 0)) * align
        if i == count - 1:
            size = length - start
        if landscape:
            strips.append(Strip(i, start, 0, size, height))
        else:
            strips.append(Strip(i, 0, start, width, size))
        start += size
    return strips


# ============================================================================
# WORKER SIDE
# ============================================================================

_worker_context: Optional[PipelineContext] = None


def _init_worker() -> None:
    global _worker_context
    _worker_context = PipelineContext()


def trace_chunk(
    data: np.ndarray,
    params: TracerParams,
    scale: int,
    origin: Tuple[int, int],
    index: int,
    context: Optional[PipelineContext] = None,
    edges: Edges = ALL_EDGES,
) -> TracerResult:
    """
    Trace one strip and move its paths to the strip origin.

    Background flooding only starts from ``edges``, the strip sides that lie
    on the full image border, so an enclosed region cut by a strip boundary
    is kept like it is in a single pass.

    Runs inside a worker process (using the process context) or in-process
    with an explicit ``context``.
    """
    context = context or _worker_context or PipelineContext()
    buffer = PixelBuffer(data)
    result = trace_prepared(
        buffer, params, scale,
        source_size=(buffer.width // scale, buffer.height // scale),
        context=context,
        id_prefix=f"strip{index}-",
        build_markup=False,
        edges=edges,
    )
    dx, dy = origin[0] / scale, origin[1] / scale
    result.paths = [p.translated(dx, dy) for p in result.paths]
    return result


# ============================================================================
# MERGING
# ============================================================================

def merge_results(
    results: Sequence[TracerResult],
    source_size: Tuple[int, int],
    build_markup: bool = True,
) -> TracerResult:
    """
    Merge strip results into one.

    Paths keep their per-strip ids and are ordered by the pixel count of
    their strip color; palette counts are summed per hex and ratios
    recomputed over the merged total.
    """
    ranked = []
    counts: Dict[str, int] = {}
    items: Dict[str, PaletteItem] = {}
    for strip_index, result in enumerate(results):
        for order, path in enumerate(result.paths):
            weight = result.palette[order].pixel_count if order < len(result.palette) else 0
            ranked.append((-weight, strip_index, order, path))
        for item in result.palette:
            counts[item.hex] = counts.get(item.hex, 0) + item.pixel_count
            items.setdefault(item.hex, item)

    ranked.sort(key=lambda r: r[:3])
    paths = [r[3] for r in ranked]

    total = sum(counts.values())
    palette = sorted(
        (
            PaletteItem(h, items[h].r, items[h].g, items[h].b, c, c / total if total else 0.0)
            for h, c in counts.items()
        ),
        key=lambda p: -p.pixel_count,
    )

    width, height = source_size
    markup = build_svg(paths, width, height) if build_markup else None
    return TracerResult(paths=paths, palette=palette, markup=markup, width=width, height=height)


# ============================================================================
# POOL
# ============================================================================

@dataclass
class PoolStatus:
    """Pool lifecycle event: ``enabled``, ``disabled`` or ``failed``."""
    state: str
    workers: int
    error: Optional[ResourceError] = None


StatusCallback = Callable[[PoolStatus], None]
ProgressCallback = Callable[[int, int], None]


class WorkerPool:
    """Process pool that traces strips of one image in parallel."""

    def __init__(
        self,
        size: Optional[int] = None,
        min_chunk_pixels: Optional[int] = None,
        on_status: Optional[StatusCallback] = None,
        options: Optional[PoolOptions] = None,
        use_processes: bool = True,
    ):
        self.options = options or PoolOptions()
        self.size = size or self.options.size
        self.min_chunk_pixels = min_chunk_pixels or self.options.min_chunk_pixels
        self.on_status = on_status
        self.use_processes = use_processes
        self._executor: Optional[concurrent.futures.ProcessPoolExecutor] = None
        self._local_context: Optional[PipelineContext] = None
        self._degraded = False

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def _emit(self, status: PoolStatus) -> None:
        if self.on_status is not None:
            self.on_status(status)

    def _degrade(self, cause: BaseException) -> None:
        error = ResourceError(f"Worker pool unavailable: {cause}")
        error.__cause__ = cause
        logger.warning("%s; falling back to sequential tracing", error)
        self._shutdown_executor()
        self._degraded = True
        self._emit(PoolStatus("failed", 0, error))

    def _ensure_executor(self) -> Optional[concurrent.futures.ProcessPoolExecutor]:
        if not self.use_processes or self._degraded:
            return None
        if self._executor is None:
            try:
                self._executor = concurrent.futures.ProcessPoolExecutor(
                    max_workers=self.size, initializer=_init_worker
                )
            except (OSError, ValueError, NotImplementedError) as e:
                self._degrade(e)
                return None
            logger.info("Worker pool started with %d workers", self.size)
            self._emit(PoolStatus("enabled", self.size))
        return self._executor

    def _context(self) -> PipelineContext:
        if self._local_context is None:
            self._local_context = PipelineContext()
        return self._local_context

    @property
    def parallel(self) -> bool:
        return self.use_processes and not self._degraded

    def status(self) -> PoolStatus:
        if self._degraded:
            return PoolStatus("failed", 0)
        if self._executor is None:
            return PoolStatus("disabled", 0)
        return PoolStatus("enabled", self.size)

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def close(self) -> None:
        was_running = self._executor is not None
        self._shutdown_executor()
        if self._local_context is not None:
            self._local_context.close()
            self._local_context = None
        if was_running:
            self._emit(PoolStatus("disabled", 0))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # tracing
    # ------------------------------------------------------------------

    def _run_parallel(
        self,
        executor: concurrent.futures.ProcessPoolExecutor,
        jobs: List[Tuple[Strip, np.ndarray, Edges]],
        params: TracerParams,
        scale: int,
        on_progress: Optional[ProgressCallback],
    ) -> List[TracerResult]:
        futures = {
            executor.submit(trace_chunk, data, params, scale, (strip.x, strip.y), strip.index,
                            edges=edges): strip
            for strip, data, edges in jobs
        }
        results: Dict[int, TracerResult] = {}
        failures: Dict[int, BaseException] = {}
        done = 0
        # Every dispatched strip settles before a failure is raised.
        for future in concurrent.futures.as_completed(futures):
            strip = futures[future]
            error = future.exception()
            if error is not None:
                failures[strip.index] = error
            else:
                results[strip.index] = future.result()
            done += 1
            if on_progress is not None:
                on_progress(done, len(jobs))

        broken = [e for e in failures.values() if isinstance(e, BrokenProcessPool)]
        if broken:
            raise broken[0]
        if failures:
            index = min(failures)
            logger.error("Strip %d failed: %s", index, failures[index])
            raise WorkerError(index, failures[index])
        return [results[strip.index] for strip, _, _ in jobs]

    def _run_sequential(
        self,
        jobs: List[Tuple[Strip, np.ndarray, Edges]],
        params: TracerParams,
        scale: int,
        on_progress: Optional[ProgressCallback],
    ) -> List[TracerResult]:
        results = []
        for done, (strip, data, edges) in enumerate(jobs, start=1):
            try:
                results.append(trace_chunk(data, params, scale, (strip.x, strip.y), strip.index,
                                           context=self._context(), edges=edges))
            except Exception as e:
                raise WorkerError(strip.index, e) from e
            if on_progress is not None:
                on_progress(done, len(jobs))
        return results

    def trace_parallel(
        self,
        prepared: PixelBuffer,
        params: TracerParams,
        scale: int,
        source_size: Optional[Tuple[int, int]] = None,
        on_progress: Optional[ProgressCallback] = None,
        build_markup: Optional[bool] = None,
    ) -> TracerResult:
        """
        Trace a prepared image strip by strip and merge the results.

        Args:
            prepared: Buffer at processing resolution
            params: Tracer parameters
            scale: Sampling scale of ``prepared``
            source_size: (width, height) in source pixels
            on_progress: Called with (completed strips, total strips)

        Returns:
            Merged TracerResult in source pixel space
        """
        if source_size is None:
            source_size = (prepared.width // scale, prepared.height // scale)
        if build_markup is None:
            build_markup = self.options.build_markup

        # Strips must agree on the background color, so resolve it once.
        if params.ignore_background and params.background_color is None:
            detected = detect_background_color(prepared)
            if detected is not None:
                params = params.replace(background_color=rgb_to_hex(detected))

        strips = plan_strips(prepared.width, prepared.height, self.size, self.min_chunk_pixels, align=scale)
        jobs = [
            (s, np.array(prepared.data[s.y:s.y + s.height, s.x:s.x + s.width]),
             s.edges(prepared.width, prepared.height))
            for s in strips
        ]
        logger.debug("Tracing %dx%d in %d strips", prepared.width, prepared.height, len(strips))

        executor = self._ensure_executor() if len(jobs) > 1 else None
        if executor is not None:
            try:
                results = self._run_parallel(executor, jobs, params, scale, on_progress)
            except BrokenProcessPool as e:
                self._degrade(e)
                results = self._run_sequential(jobs, params, scale, on_progress)
        else:
            results = self._run_sequential(jobs, params, scale, on_progress)

        return merge_results(results, source_size, build_markup)
