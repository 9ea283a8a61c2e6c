"""
Tests for the async tracing session.
"""

import asyncio

from snaptrace import AsyncTracer, CancellationError, TracerParams
from snaptrace.config import PoolOptions, SchedulerOptions
from snaptrace.workers import WorkerPool

FAST = SchedulerOptions(debounce_ms=10)


class TestAsyncTracer:
    """Test debounced tracing of one image."""

    def test_trace(self, white_with_square):
        async def main():
            async with AsyncTracer(white_with_square, scheduler_options=FAST) as tracer:
                return await tracer.trace(TracerParams(colors=2))

        result = asyncio.run(main())
        assert [p.fill_color for p in result.paths] == ["#000000"]

    def test_slider_burst_keeps_last(self, white_with_square):
        """Test that rapid parameter changes resolve to the newest request."""
        async def main():
            async with AsyncTracer(white_with_square, scheduler_options=FAST) as tracer:
                requests = [tracer.trace(TracerParams(colors=2, paths=p)) for p in (40, 60, 80)]
                return await asyncio.gather(*requests, return_exceptions=True)

        results = asyncio.run(main())
        assert all(isinstance(r, CancellationError) for r in results[:2])
        assert len(results[2].paths) == 1

    def test_immediate_with_sampling(self, white_with_square):
        async def main():
            async with AsyncTracer(white_with_square, scheduler_options=FAST) as tracer:
                result = await tracer.trace(TracerParams(colors=2, sampling=2), immediate=True)
                return result, tracer.context.precache.cached_levels(white_with_square)

        result, levels = asyncio.run(main())
        assert (result.width, result.height) == (100, 100)
        assert 2 in levels

    def test_large_images_use_pool(self, white_with_square):
        options = PoolOptions(size=2, min_chunk_pixels=1000, parallel_threshold=5000)
        pool = WorkerPool(options=options, use_processes=False)

        async def main():
            async with AsyncTracer(white_with_square, pool=pool, scheduler_options=FAST,
                                   warm_precache=False) as tracer:
                return await tracer.trace(TracerParams(colors=2), immediate=True)

        try:
            result = asyncio.run(main())
        finally:
            pool.close()
        assert result.paths
        assert all(p.id.startswith("strip") for p in result.paths)
