"""
Sampling precache.

Computes the prepared (upscaled and sharpened) buffer for every sampling
level of the loaded image in background threads, so switching the sampling
level does not pay the upscale cost again. One source image is cached at a
time; loading a different image drops every entry of the previous one.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import config
from .preprocess import prepare
from .types import PixelBuffer

logger = logging.getLogger(__name__)


@dataclass
class PrecacheStatus:
    """Progress of a precache run for one source."""
    pending: Tuple[int, ...] = ()
    completed: Tuple[int, ...] = ()
    failed: Tuple[int, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.pending


StatusCallback = Callable[[PrecacheStatus], None]


@dataclass
class _Entry:
    identity: str
    buffers: Dict[int, PixelBuffer] = field(default_factory=dict)
    inflight: Dict[int, Future] = field(default_factory=dict)
    failed: Dict[int, BaseException] = field(default_factory=dict)


class SamplingPrecache:
    """Per-level cache of prepared buffers for the current source image."""

    def __init__(
        self,
        levels: Sequence[int] = config.SAMPLING_LEVELS,
        max_workers: int = 3,
        on_status: Optional[StatusCallback] = None,
    ):
        self.levels = tuple(levels)
        self.max_workers = max_workers
        self.on_status = on_status
        self._lock = threading.RLock()
        self._entry: Optional[_Entry] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------
    # source lifecycle
    # ------------------------------------------------------------------

    def set_source(self, source: PixelBuffer) -> bool:
        """Make ``source`` current. Returns True when it replaced another image."""
        with self._lock:
            return self._set_source_locked(source)

    def _set_source_locked(self, source: PixelBuffer) -> bool:
        entry = self._entry
        if entry is not None and entry.identity == source.identity:
            return False
        replaced = entry is not None
        if entry is not None:
            for future in entry.inflight.values():
                future.cancel()
            logger.debug("Precache invalidated for %s", entry.identity[:8])
        self._entry = _Entry(source.identity)
        return replaced

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="snaptrace-precache"
            )
        return self._executor

    # ------------------------------------------------------------------
    # computing
    # ------------------------------------------------------------------

    def _submit_locked(self, source: PixelBuffer, level: int) -> Optional[Future]:
        entry = self._entry
        if level in entry.buffers:
            return None
        future = entry.inflight.get(level)
        if future is None:
            entry.failed.pop(level, None)
            future = self._pool().submit(self._compute, entry, source, level)
            entry.inflight[level] = future
        return future

    def _compute(self, entry: _Entry, source: PixelBuffer, level: int) -> PixelBuffer:
        # Results are stored before the future resolves, so waiters see them.
        try:
            buffer = prepare(source, level)
        except Exception as e:
            with self._lock:
                entry.inflight.pop(level, None)
                entry.failed[level] = e
                status = self._status_locked(entry)
            logger.warning("Precache of level %d failed: %s", level, e)
            self._emit(entry, status)
            raise
        with self._lock:
            entry.inflight.pop(level, None)
            entry.buffers[level] = buffer
            status = self._status_locked(entry)
        logger.debug("Precached level %d for %s", level, entry.identity[:8])
        self._emit(entry, status)
        return buffer

    def _emit(self, entry: _Entry, status: PrecacheStatus) -> None:
        if entry is self._entry and self.on_status is not None:
            self.on_status(status)

    def precache(self, source: PixelBuffer, wait: bool = False) -> PrecacheStatus:
        """
        Start preparing every level for ``source``.

        Concurrent calls for the same source share the in-flight work.
        With ``wait`` the call blocks until every level has settled.
        """
        with self._lock:
            self._set_source_locked(source)
            futures = [self._submit_locked(source, level) for level in self.levels]
        if wait:
            for future in futures:
                if future is not None and not future.cancelled():
                    future.exception()
        return self.status(source)

    def get_or_compute(self, source: PixelBuffer, level: int) -> PixelBuffer:
        """Prepared buffer for ``level``, waiting on in-flight work or computing it."""
        with self._lock:
            self._set_source_locked(source)
            cached = self._entry.buffers.get(level)
            if cached is not None:
                return cached
            future = self._submit_locked(source, level)
        return future.result()

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def _matches(self, source: PixelBuffer) -> bool:
        return self._entry is not None and self._entry.identity == source.identity

    def get(self, source: PixelBuffer, level: int) -> Optional[PixelBuffer]:
        """Cached buffer for ``level`` or None. Never computes."""
        with self._lock:
            if not self._matches(source):
                return None
            return self._entry.buffers.get(level)

    def has(self, source: PixelBuffer, level: int) -> bool:
        return self.get(source, level) is not None

    def cached_levels(self, source: PixelBuffer) -> List[int]:
        with self._lock:
            if not self._matches(source):
                return []
            return sorted(self._entry.buffers)

    def _status_locked(self, entry: _Entry) -> PrecacheStatus:
        return PrecacheStatus(
            pending=tuple(lv for lv in self.levels if lv in entry.inflight),
            completed=tuple(lv for lv in self.levels if lv in entry.buffers),
            failed=tuple(lv for lv in self.levels if lv in entry.failed),
        )

    def status(self, source: PixelBuffer) -> PrecacheStatus:
        with self._lock:
            if not self._matches(source):
                return PrecacheStatus()
            return self._status_locked(self._entry)

    def stats(self, source: PixelBuffer) -> Dict[str, object]:
        """Cached levels and their memory footprint in bytes."""
        with self._lock:
            if not self._matches(source):
                return {"levels": [], "bytes": 0}
            buffers = self._entry.buffers
            return {
                "levels": sorted(buffers),
                "bytes": sum(b.data.nbytes for b in buffers.values()),
            }

    def clear(self, source: Optional[PixelBuffer] = None) -> None:
        """Drop every entry, or only those of ``source`` when given."""
        with self._lock:
            if self._entry is None:
                return
            if source is not None and not self._matches(source):
                return
            for future in self._entry.inflight.values():
                future.cancel()
            self._entry = None

    def close(self) -> None:
        self.clear()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
