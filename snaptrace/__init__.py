"""
Snaptrace - Raster to flat-color vector tracing

Snaptrace clusters an image into a bounded palette, traces each color's
boundary with marching squares and fits compact curves to it. A scheduler,
a worker pool and a sampling precache keep it responsive for interactive
hosts re-tracing on every parameter change.
"""

from .errors import (
    TracerError,
    InputError,
    CancellationError,
    ResourceError,
    WorkerError,
)
from .types import (
    PixelBuffer,
    TracerParams,
    ColorMode,
    Centroid,
    QuantizeResult,
    PaletteItem,
    VectorPath,
    TracerResult,
)
from .progress import Checkpoint
from .pipeline import (
    PipelineContext,
    PythonBackend,
    Backend,
    trace,
    trace_prepared,
    auto_params,
)
from .quantize import quantize, estimate_colors, extract_palette, map_to_palette
from .output import build_svg, parse_svg_paths
from .precache import SamplingPrecache, PrecacheStatus
from .scheduler import TaskScheduler, TaskState
from .workers import WorkerPool, PoolStatus, plan_strips
from .session import AsyncTracer
from .analysis import ImageAnalyzer
from .quality import compute_quality_metrics

__version__ = "0.1.0"

__all__ = [
    "TracerError",
    "InputError",
    "CancellationError",
    "ResourceError",
    "WorkerError",
    "PixelBuffer",
    "TracerParams",
    "ColorMode",
    "Centroid",
    "QuantizeResult",
    "PaletteItem",
    "VectorPath",
    "TracerResult",
    "Checkpoint",
    "PipelineContext",
    "PythonBackend",
    "Backend",
    "trace",
    "trace_prepared",
    "auto_params",
    "quantize",
    "estimate_colors",
    "extract_palette",
    "map_to_palette",
    "build_svg",
    "parse_svg_paths",
    "SamplingPrecache",
    "PrecacheStatus",
    "TaskScheduler",
    "TaskState",
    "WorkerPool",
    "PoolStatus",
    "plan_strips",
    "AsyncTracer",
    "ImageAnalyzer",
    "compute_quality_metrics",
]
