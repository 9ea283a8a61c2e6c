"""
Cooperative checkpoints.

Long loops in the pipeline call a checkpoint between chunks of rows or
labels. The host uses it to report progress, and may abort a run by setting
the cancel event, in which case the next checkpoint raises
``CancellationError``.
"""

import threading
from typing import Callable, Optional

from .errors import CancellationError

ProgressCallback = Callable[[str, float], None]


class Checkpoint:
    """Progress and cancellation hook passed down the pipeline."""

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.calls = 0

    def __call__(self, stage: str, fraction: float = 0.0) -> None:
        self.calls += 1
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CancellationError("cancelled")
        if self.on_progress is not None:
            self.on_progress(stage, min(1.0, max(0.0, fraction)))

    def cancel(self) -> None:
        if self.cancel_event is None:
            self.cancel_event = threading.Event()
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


def ensure(checkpoint: Optional[Checkpoint]) -> Checkpoint:
    """Return ``checkpoint`` or a no-op one."""
    return checkpoint if checkpoint is not None else Checkpoint()
