"""
Snaptrace error taxonomy.

- InputError: bad buffer or parameter, raised synchronously.
- CancellationError: a task lost to a newer request or a full queue.
- ResourceError: the parallel backend could not start; callers degrade to
  the sequential path instead of aborting.
- WorkerError: one strip of a sharded run failed.

A fully transparent image is not an error: it traces to an empty result.
"""


class TracerError(Exception):
    """Base class for every error raised by snaptrace."""


class InputError(TracerError, ValueError):
    """Invalid pixel buffer or tracer parameter."""


class CancellationError(TracerError):
    """A task was superseded, dropped or cancelled.

    ``reason`` is one of ``superseded``, ``overflow``, ``cancelled`` or
    ``during-execution`` so a UI can tell "your newer input won" apart from a
    real failure.
    """

    def __init__(self, reason: str = "cancelled", task_id: str = None):
        self.reason = reason
        self.task_id = task_id
        message = f"Task {task_id} cancelled ({reason})" if task_id else f"Task cancelled ({reason})"
        super().__init__(message)


class ResourceError(TracerError):
    """A worker or backend could not be initialized."""


class WorkerError(TracerError):
    """A worker failed while tracing one strip of an image."""

    def __init__(self, strip_index: int, cause: BaseException):
        self.strip_index = strip_index
        self.cause = cause
        super().__init__(f"Strip {strip_index} failed: {cause}")
