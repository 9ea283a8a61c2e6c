"""
Tests for the sampling precache.
"""

import threading

import pytest

from conftest import solid
from snaptrace import SamplingPrecache
from snaptrace import precache as precache_module


@pytest.fixture
def counted_prepare(monkeypatch):
    """Replace the upscaler with a counting one."""
    calls = []
    lock = threading.Lock()
    real = precache_module.prepare

    def fake(source, level, checkpoint=None):
        with lock:
            calls.append(level)
        return real(source, level)

    monkeypatch.setattr(precache_module, "prepare", fake)
    return calls


class TestSamplingPrecache:
    """Test per-level caching of prepared buffers."""

    def test_precache_all_levels(self, white_with_square):
        with SamplingPrecache() as cache:
            status = cache.precache(white_with_square, wait=True)
            assert status.is_complete
            assert status.completed == (1, 2, 4)
            assert cache.cached_levels(white_with_square) == [1, 2, 4]
            assert cache.get(white_with_square, 4).width == 400

    def test_repeated_precache_computes_once(self, white_with_square, counted_prepare):
        with SamplingPrecache() as cache:
            cache.precache(white_with_square, wait=True)
            cache.precache(white_with_square, wait=True)
            cache.get_or_compute(white_with_square, 2)
        assert sorted(counted_prepare) == [1, 2, 4]

    def test_get_never_computes(self, white_with_square, counted_prepare):
        with SamplingPrecache() as cache:
            assert cache.get(white_with_square, 2) is None
            assert not cache.has(white_with_square, 2)
        assert counted_prepare == []

    def test_get_or_compute(self, white_with_square):
        with SamplingPrecache(levels=(2,)) as cache:
            buffer = cache.get_or_compute(white_with_square, 2)
            assert buffer.width == 200
            assert cache.get(white_with_square, 2) is buffer

    def test_new_source_invalidates(self, white_with_square):
        other = solid(10, 10, (1, 2, 3))
        with SamplingPrecache(levels=(1, 2)) as cache:
            cache.precache(white_with_square, wait=True)
            assert cache.set_source(other) is True
            assert cache.cached_levels(white_with_square) == []
            assert cache.set_source(other) is False

    def test_status_events(self, white_with_square):
        events = []
        with SamplingPrecache(levels=(1, 2), on_status=events.append) as cache:
            cache.precache(white_with_square, wait=True)
        assert len(events) == 2
        assert any(sorted(e.completed) == [1, 2] for e in events)

    def test_failure_recorded(self, white_with_square, monkeypatch):
        def broken(source, level, checkpoint=None):
            raise MemoryError("too big")

        monkeypatch.setattr(precache_module, "prepare", broken)
        with SamplingPrecache(levels=(4,)) as cache:
            status = cache.precache(white_with_square, wait=True)
            assert status.failed == (4,)
            with pytest.raises(MemoryError):
                cache.get_or_compute(white_with_square, 4)

    def test_stats_and_clear(self, white_with_square):
        with SamplingPrecache(levels=(1, 2)) as cache:
            cache.precache(white_with_square, wait=True)
            stats = cache.stats(white_with_square)
            assert stats["levels"] == [1, 2]
            assert stats["bytes"] == 100 * 100 * 4 + 200 * 200 * 4
            cache.clear(white_with_square)
            assert cache.stats(white_with_square) == {"levels": [], "bytes": 0}
