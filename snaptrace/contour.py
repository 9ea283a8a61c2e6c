"""
Contour tracing with marching squares.

For each label a padded occupancy grid is swept with 2x2 windows. Every
window maps to a 4-bit case (TL=8, TR=4, BR=2, BL=1) and the lookup table
gives 0, 1 or 2 boundary segments between cell-edge midpoints. Segment
endpoints live on a half-pixel grid, so they are encoded as integers on a
doubled grid and given dense node ids.

Every boundary node joins exactly two segments, so the segment graph is a
disjoint union of cycles. Walking a cycle consumes its edges; each closed
walk is one polygon loop.

Loop coordinates are in processing pixels with pixel ``i`` covering
``[i, i + 1]``.
"""

import logging
from typing import Dict, Iterable, List, Optional

import numpy as np

from .progress import Checkpoint, ensure

logger = logging.getLogger(__name__)

# Segment endpoints per case as (sx, sy) offsets within the cell, in pairs.
# Saddle cases 5 and 10 always use the same diagonal pairing.
MS_LOOKUP = [
    [],
    [(0, .5), (.5, 1)],
    [(.5, 1), (1, .5)],
    [(0, .5), (1, .5)],
    [(.5, 0), (1, .5)],
    [(0, .5), (.5, 0), (1, .5), (.5, 1)],
    [(.5, 0), (.5, 1)],
    [(0, .5), (.5, 0)],
    [(0, .5), (.5, 0)],
    [(.5, 0), (.5, 1)],
    [(.5, 0), (1, .5), (.5, 1), (0, .5)],
    [(.5, 0), (1, .5)],
    [(0, .5), (1, .5)],
    [(1, .5), (.5, 1)],
    [(0, .5), (.5, 1)],
    [],
]


def polygon_area(points: np.ndarray) -> float:
    """Absolute shoelace area of a closed polygon."""
    if len(points) < 3:
        return 0.0
    x = points[:, 0]
    y = points[:, 1]
    return abs(float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))) / 2.0


def _segments(mask: np.ndarray) -> np.ndarray:
    """
    Marching-squares segments for a boolean mask.

    Returns:
        (M, 4) int array of endpoints (x0, y0, x1, y1) on the doubled grid
    """
    grid = np.pad(mask.astype(np.uint8), 1)
    case = (
        (grid[:-1, :-1] << 3)
        | (grid[:-1, 1:] << 2)
        | (grid[1:, 1:] << 1)
        | grid[1:, :-1]
    )

    parts = []
    for value in range(1, 15):
        ys, xs = np.nonzero(case == value)
        if len(xs) == 0:
            continue
        table = MS_LOOKUP[value]
        for i in range(0, len(table), 2):
            (sx, sy), (ex, ey) = table[i], table[i + 1]
            # Padded cell (x, y) has its top-left corner at source pixel (x - 1, y - 1);
            # the half-pixel shift moves pixel centers to i + 0.5.
            parts.append(np.stack([
                2 * xs + int(2 * sx) - 1,
                2 * ys + int(2 * sy) - 1,
                2 * xs + int(2 * ex) - 1,
                2 * ys + int(2 * ey) - 1,
            ], axis=1))

    if not parts:
        return np.empty((0, 4), dtype=np.int64)
    return np.concatenate(parts).astype(np.int64)


def _walk_cycles(segments: np.ndarray) -> List[np.ndarray]:
    """Split the segment graph into closed node sequences."""
    m = len(segments)
    endpoints = np.concatenate([segments[:, [1, 0]], segments[:, [3, 2]]])
    nodes, inverse = np.unique(endpoints, axis=0, return_inverse=True)
    inverse = inverse.ravel()
    a, b = inverse[:m], inverse[m:]

    # Arena adjacency: two neighbor slots per node.
    n = len(nodes)
    order = np.argsort(np.concatenate([a, b]), kind='stable')
    other = np.concatenate([b, a])[order]
    if len(other) != 2 * n:
        raise RuntimeError("Marching squares produced a node without degree 2")
    neighbors = other.reshape(n, 2).tolist()

    visited = bytearray(n)
    cycles = []
    for start in range(n):
        if visited[start]:
            continue
        walk = [start]
        visited[start] = 1
        prev, cur = start, neighbors[start][0]
        while cur != start:
            walk.append(cur)
            visited[cur] = 1
            first, second = neighbors[cur]
            nxt = second if first == prev else first
            prev, cur = cur, nxt
        cycles.append(nodes[walk][:, ::-1] / 2.0)
    return cycles


def trace_mask(mask: np.ndarray, noise_threshold: float = 0.0) -> List[np.ndarray]:
    """
    Closed boundary loops of a boolean mask.

    Loops with fewer than three points or an area below ``noise_threshold``
    are dropped as speckle.
    """
    segments = _segments(mask)
    if len(segments) == 0:
        return []
    loops = []
    for loop in _walk_cycles(segments):
        if len(loop) <= 2:
            continue
        area = polygon_area(loop)
        if area > 0 and area >= noise_threshold:
            loops.append(loop)
    return loops


def trace_label(labels: np.ndarray, label: int, noise_threshold: float = 0.0) -> List[np.ndarray]:
    """Loops for one label of a label map, as (N, 2) float arrays of (x, y)."""
    mask = labels == label
    rows = np.flatnonzero(mask.any(axis=1))
    if len(rows) == 0:
        return []
    cols = np.flatnonzero(mask.any(axis=0))
    y0, y1 = rows[0], rows[-1] + 1
    x0, x1 = cols[0], cols[-1] + 1

    loops = trace_mask(mask[y0:y1, x0:x1], noise_threshold)
    offset = np.array([x0, y0], dtype=np.float64)
    return [loop + offset for loop in loops]


def trace_labels(
    labels: np.ndarray,
    label_ids: Iterable[int],
    noise_threshold: float = 0.0,
    checkpoint: Optional[Checkpoint] = None,
) -> Dict[int, List[np.ndarray]]:
    """Trace several labels, yielding to the checkpoint between them."""
    checkpoint = ensure(checkpoint)
    label_ids = list(label_ids)
    result = {}
    for i, label in enumerate(label_ids):
        checkpoint("contour", i / max(1, len(label_ids)))
        result[label] = trace_label(labels, label, noise_threshold)
    total = sum(len(v) for v in result.values())
    logger.debug("Traced %d loops over %d labels", total, len(label_ids))
    return result
