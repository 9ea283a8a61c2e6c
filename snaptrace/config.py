"""
Snaptrace configuration.

Defaults and tunable constants for the tracing pipeline, the task scheduler
and the worker pool. Pipeline constants are plain module values; the
concurrency layer takes option objects so a host can override them per
instance.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Tuple


# ============================================================================
# PIXELS
# ============================================================================

# Pixels with alpha below this are invisible: excluded from statistics and
# labelled as background.
VISIBLE_ALPHA = 128

# Label value reserved for "background / excluded" in a label map.
BACKGROUND_SENTINEL = 255

MIN_COLORS = 2
MAX_COLORS = 64


# ============================================================================
# PREPROCESSING
# ============================================================================

SAMPLING_LEVELS: Tuple[int, ...] = (1, 2, 4)

# Sharpen strength applied after upscaling, per sampling level.
SHARPEN_STRENGTH: Dict[int, float] = {
    1: 0.0,
    2: 0.4,
    4: 0.7,
}

MAX_BLUR = 10

# Rows handled between two checkpoints.
ROW_CHUNK = 200

# Sparse sample size for the binary color mode threshold.
BINARY_SAMPLE_SIZE = 5000

LUMA_WEIGHTS = (0.299, 0.587, 0.114)


# ============================================================================
# QUANTIZATION
# ============================================================================

KMEANS_SEED = 12345
KMEANS_CANDIDATES = 10
KMEANS_ITERATIONS = 8
KMEANS_LABEL_CHUNK = 40_000

# (pixel count upper bound, sample budget); smaller images sample denser.
SAMPLE_BUDGETS = (
    (250_000, 4000),
    (1_000_000, 3000),
)
SAMPLE_BUDGET_LARGE = 2000

ANTI_ALIAS_ITERATIONS = 2
ANTI_ALIAS_QUORUM = 5

# Neighbor counts (of 8) needed by the denoise pass.
DENOISE_THRESHOLD_LOW = 6
DENOISE_THRESHOLD_HIGH = 5
DENOISE_STRONG_ABOVE = 50

BACKGROUND_DISTANCE = 30.0
DEFAULT_BACKGROUND = "#ffffff"

# Bin width used for edge-sampled background detection and color estimation.
COLOR_BIN = 16


# ============================================================================
# PATH BUILDING
# ============================================================================

STAIRCASE_EDGE = 1.6
STAIRCASE_DEVIATION = 0.75
MICRO_EDGE = 2.5
SHORT_SEGMENT = 1.0
SUBDIVIDE_BELOW = 70
COORD_PRECISION = 2
STROKE_WIDTH = 0.25


# ============================================================================
# DEFAULT PARAMETERS
# ============================================================================

DEFAULT_PARAMS = {
    'colors': 32,
    'paths': 85,
    'corners': 75,
    'noise': 20,
    'blur': 0,
    'sampling': 1,
    'ignore_background': True,
    'background_color': None,
    'smart_background': True,
    'color_mode': 'color',
    'anti_alias': True,
    'anti_alias_iterations': ANTI_ALIAS_ITERATIONS,
    'palette': None,
}


# ============================================================================
# CONCURRENCY
# ============================================================================

PREPROCESS_CACHE_LIMIT = 4
KMEANS_CACHE_LIMIT = 8

MIN_WORKERS = 2
MAX_WORKERS = 8
MIN_CHUNK_PIXELS = 500_000


def default_worker_count() -> int:
    """Hardware concurrency minus one, clamped to [MIN_WORKERS, MAX_WORKERS]."""
    cpus = os.cpu_count() or 4
    return max(MIN_WORKERS, min(MAX_WORKERS, cpus - 1))


@dataclass
class SchedulerOptions:
    """Task scheduler tuning."""
    debounce_ms: float = 150.0
    max_queue_size: int = 3
    cancel_on_new_task: bool = True


@dataclass
class PoolOptions:
    """Worker pool tuning."""
    size: int = field(default_factory=default_worker_count)
    min_chunk_pixels: int = MIN_CHUNK_PIXELS
    # Prepared images above this pixel count go through the pool.
    parallel_threshold: int = 2 * MIN_CHUNK_PIXELS
    build_markup: bool = True
