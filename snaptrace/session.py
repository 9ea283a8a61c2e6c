"""
Async tracing session for one loaded image.

``AsyncTracer`` ties together the pieces a UI host needs while the user
drags sliders: a ``PipelineContext`` owning the caches of the image, a
``TaskScheduler`` collapsing bursts of requests, and an optional
``WorkerPool`` for large prepared images.

Usage:
    async with AsyncTracer(buffer) as tracer:
        result = await tracer.trace(TracerParams(colors=8))
"""

import functools
import logging
from typing import Optional

from .config import SchedulerOptions
from .pipeline import PipelineContext, trace_prepared
from .progress import Checkpoint
from .scheduler import TaskScheduler
from .types import PixelBuffer, TracerParams, TracerResult
from .workers import WorkerPool

logger = logging.getLogger(__name__)


class AsyncTracer:
    """Debounced tracing of one image with per-image caches."""

    def __init__(
        self,
        source: PixelBuffer,
        image_id: Optional[str] = None,
        scheduler: Optional[TaskScheduler] = None,
        pool: Optional[WorkerPool] = None,
        scheduler_options: Optional[SchedulerOptions] = None,
        warm_precache: bool = True,
    ):
        self.source = source
        self.image_id = image_id or source.identity[:12]
        self.context = PipelineContext()
        self._own_scheduler = scheduler is None
        self.scheduler = scheduler or TaskScheduler(scheduler_options)
        self.pool = pool
        if warm_precache:
            self.context.precache.precache(source)

    def _run(self, params: TracerParams, checkpoint: Optional[Checkpoint] = None) -> TracerResult:
        prepared = self.context.prepared(self.source, params.sampling, checkpoint)
        source_size = (self.source.width, self.source.height)
        if self.pool is not None and prepared.pixel_count > self.pool.options.parallel_threshold:
            logger.debug("Sharding %d px across the worker pool", prepared.pixel_count)
            return self.pool.trace_parallel(prepared, params, params.sampling, source_size)
        return trace_prepared(
            prepared, params, params.sampling, source_size,
            context=self.context, checkpoint=checkpoint, cache_key=self.source.identity,
        )

    async def trace(
        self,
        params: TracerParams,
        immediate: bool = False,
        priority: Optional[str] = None,
        checkpoint: Optional[Checkpoint] = None,
    ) -> TracerResult:
        """
        Schedule a trace run and wait for its result.

        Raises CancellationError when a newer request for this image wins.
        """
        executor = functools.partial(self._run, params, checkpoint)
        if immediate:
            future = self.scheduler.submit_immediate(self.image_id, params, executor, priority or "high")
        else:
            future = self.scheduler.submit_debounced(self.image_id, params, executor, priority or "normal")
        return await future

    def cancel(self) -> int:
        return self.scheduler.cancel_image(self.image_id)

    async def close(self) -> None:
        if self._own_scheduler:
            await self.scheduler.close()
        else:
            self.scheduler.cancel_image(self.image_id)
        self.context.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()
