"""
Snaptrace Path Builder.

Turns traced polygon loops into compact SVG path data:
1. Staircase removal - drop grid zig-zag points
2. Pre-smoothing - weighted 3-point averaging
3. Douglas-Peucker simplification
4. Midpoint subdivision for low fitting strength
5. Post-smoothing with corners pinned
6. Corner classification
7. Emission - lines at corners, Catmull-Rom cubics elsewhere

All geometry runs in processing pixels; coordinates are divided by the
sampling scale on emission.
"""

import math
import re
from typing import List, Sequence

import numpy as np

from . import config
from .types import TracerParams, _fmt


# ============================================================================
# GEOMETRY HELPERS
# ============================================================================

def _neighbors(points: np.ndarray):
    return np.roll(points, 1, axis=0), np.roll(points, -1, axis=0)


def _point_segment_distance(points: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Distance from each point to segment a-b."""
    ab = b - a
    denom = float(np.dot(ab, ab))
    if denom == 0.0:
        return np.hypot(*(points - a).T)
    t = np.clip(((points - a) @ ab) / denom, 0.0, 1.0)
    closest = a + t[:, None] * ab
    return np.hypot(*(points - closest).T)


def remove_staircase(points: np.ndarray) -> np.ndarray:
    """
    Drop zig-zag points left by grid tracing.

    A point goes when both its edges are shorter than STAIRCASE_EDGE and it
    sits within STAIRCASE_DEVIATION of the chord between its neighbors. Two
    adjacent points are never dropped together and at least three remain.
    """
    n = len(points)
    if n <= 3:
        return points
    prev, nxt = _neighbors(points)
    e1 = np.hypot(*(points - prev).T)
    e2 = np.hypot(*(nxt - points).T)

    chord = nxt - prev
    chord_len = np.hypot(*chord.T)
    cross = np.abs(chord[:, 0] * (points[:, 1] - prev[:, 1]) - chord[:, 1] * (points[:, 0] - prev[:, 0]))
    deviation = np.where(chord_len > 0, cross / np.maximum(chord_len, 1e-12), e1)

    candidate = (e1 < config.STAIRCASE_EDGE) & (e2 < config.STAIRCASE_EDGE) & (deviation <= config.STAIRCASE_DEVIATION)
    drop = np.zeros(n, dtype=bool)
    budget = n - 3
    for i in np.flatnonzero(candidate).tolist():
        if budget == 0:
            break
        if drop[i - 1] or (i == n - 1 and drop[0]):
            continue
        drop[i] = True
        budget -= 1
    return points[~drop]


def smooth(points: np.ndarray, weight: float, passes: int, pinned: np.ndarray = None) -> np.ndarray:
    """Laplacian smoothing: move each point toward its neighbors' midpoint."""
    for _ in range(passes):
        prev, nxt = _neighbors(points)
        moved = points + weight * ((prev + nxt) / 2.0 - points)
        if pinned is not None:
            moved[pinned] = points[pinned]
        points = moved
    return points


def _rdp_open(points: np.ndarray, epsilon: float) -> np.ndarray:
    """Douglas-Peucker over an open polyline, iterative."""
    n = len(points)
    if n <= 2:
        return points
    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]
    while stack:
        start, end = stack.pop()
        if end - start < 2:
            continue
        dist = _point_segment_distance(points[start + 1:end], points[start], points[end])
        idx = int(np.argmax(dist))
        if dist[idx] > epsilon:
            mid = start + 1 + idx
            keep[mid] = True
            stack.append((start, mid))
            stack.append((mid, end))
    return points[keep]


def simplify(points: np.ndarray, epsilon: float) -> np.ndarray:
    """Douglas-Peucker over a closed loop, split at the point farthest from the first."""
    if len(points) <= 3:
        return points
    far = int(np.argmax(np.hypot(*(points - points[0]).T)))
    if far == 0:
        return points[:1]
    first = _rdp_open(points[:far + 1], epsilon)
    second = _rdp_open(np.vstack([points[far:], points[:1]]), epsilon)
    return np.vstack([first[:-1], second[:-1]])


def subdivide(points: np.ndarray) -> np.ndarray:
    """Insert the midpoint of every edge."""
    _, nxt = _neighbors(points)
    mids = (points + nxt) / 2.0
    out = np.empty((len(points) * 2, 2), dtype=np.float64)
    out[0::2] = points
    out[1::2] = mids
    return out


def corner_mask(points: np.ndarray, corners: float) -> np.ndarray:
    """
    Hard corners: turning angle above ``180 - corners * 1.5`` degrees.

    Points whose edges are both shorter than MICRO_EDGE never count.
    """
    threshold = 180.0 - corners * 1.5
    prev, nxt = _neighbors(points)
    v1 = prev - points
    v2 = nxt - points
    l1 = np.hypot(*v1.T)
    l2 = np.hypot(*v2.T)
    denom = l1 * l2
    cos = np.where(denom > 0, np.einsum('ij,ij->i', v1, v2) / np.where(denom > 0, denom, 1.0), -1.0)
    angle = np.degrees(np.arccos(np.clip(cos, -1.0, 1.0)))
    deviation = 180.0 - angle
    micro = (l1 < config.MICRO_EDGE) & (l2 < config.MICRO_EDGE)
    return (deviation > threshold) & ~micro


# ============================================================================
# PATH DATA
# ============================================================================

def smoothing_weight(paths: float) -> float:
    return 0.25 + 0.25 * (1.0 - paths / 100.0)


def simplify_epsilon(paths: float) -> float:
    return max(0.1, 2.0 * (1.0 - paths / 100.0))


def post_smoothing_passes(paths: float, corners: float) -> int:
    passes = round((1.0 - paths / 100.0) * 2 + (1.0 - corners / 100.0))
    return max(0, min(3, int(passes)))


def fit_loop(loop: np.ndarray, params: TracerParams) -> np.ndarray:
    """Simplified, smoothed point sequence for one loop (processing pixels)."""
    points = np.asarray(loop, dtype=np.float64)
    if len(points) < 3:
        return points[:0]

    points = remove_staircase(points)
    weight = smoothing_weight(params.paths)
    points = smooth(points, weight, 2 if params.paths < 50 else 1)

    points = simplify(points, simplify_epsilon(params.paths))
    if len(points) < 3:
        return points[:0]

    if params.paths < config.SUBDIVIDE_BELOW:
        points = subdivide(points)

    passes = post_smoothing_passes(params.paths, params.corners)
    if passes:
        points = smooth(points, weight, passes, pinned=corner_mask(points, params.corners))
    return points


def emit(points: np.ndarray, corners: np.ndarray, tension: float, scale: float = 1.0) -> str:
    """
    Path data for a closed loop.

    Segments touching a corner become ``L``; the rest are Catmull-Rom cubics
    whose handles are ``(next - prev) * tension / 3``.
    """
    n = len(points)
    if n < 3:
        return ""

    def pt(p):
        return f"{_fmt(p[0] / scale)} {_fmt(p[1] / scale)}"

    parts = [f"M {pt(points[0])}"]
    for i in range(n):
        a = points[i]
        b = points[(i + 1) % n]
        if corners[i] or corners[(i + 1) % n]:
            parts.append(f"L {pt(b)}")
            continue
        seg = b - a
        if math.hypot(seg[0], seg[1]) < config.SHORT_SEGMENT:
            c1 = a + seg / 3.0
            c2 = a + seg * 2.0 / 3.0
        else:
            before = points[i - 1]
            after = points[(i + 2) % n]
            c1 = a + (b - before) * tension / 3.0
            c2 = b - (after - a) * tension / 3.0
        parts.append(f"C {pt(c1)} {pt(c2)} {pt(b)}")
    parts.append("Z")
    return " ".join(parts)


def curve_tension(paths: float) -> float:
    return 0.5 - paths / 400.0


def build_path(loop: np.ndarray, params: TracerParams, scale: float = 1.0) -> str:
    """Path data for one loop; empty when it simplifies away."""
    points = fit_loop(loop, params)
    if len(points) < 3:
        return ""
    return emit(points, corner_mask(points, params.corners), curve_tension(params.paths), scale)


def build_compound_path(loops: Sequence[np.ndarray], params: TracerParams, scale: float = 1.0) -> str:
    """One compound path for every loop of a color."""
    parts = [build_path(loop, params, scale) for loop in loops]
    return " ".join(p for p in parts if p)


# ============================================================================
# PARSING
# ============================================================================

_TOKEN = re.compile(r'[A-Za-z]|[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?')


def polygon_from_path(d: str, samples: int = 8) -> List[np.ndarray]:
    """
    Sample absolute M/L/C/Z path data back into polygons, one per subpath.

    Cubic segments are flattened with ``samples`` points each.
    """
    tokens = _TOKEN.findall(d)
    polygons = []
    current: List[tuple] = []
    cmd = None
    i = 0

    def number():
        nonlocal i
        value = float(tokens[i])
        i += 1
        return value

    while i < len(tokens):
        tok = tokens[i]
        if tok.isalpha():
            cmd = tok.upper()
            i += 1
            if cmd == 'Z':
                if current:
                    polygons.append(np.array(current))
                current = []
            continue
        if cmd == 'M':
            if current:
                polygons.append(np.array(current))
            current = [(number(), number())]
            cmd = 'L'
        elif cmd == 'L':
            current.append((number(), number()))
        elif cmd == 'C':
            p0 = np.array(current[-1])
            c1 = np.array([number(), number()])
            c2 = np.array([number(), number()])
            p1 = np.array([number(), number()])
            for t in np.linspace(0, 1, samples + 1)[1:]:
                u = 1 - t
                p = u ** 3 * p0 + 3 * u * u * t * c1 + 3 * u * t * t * c2 + t ** 3 * p1
                current.append((float(p[0]), float(p[1])))
        else:
            raise ValueError(f"Unsupported path data near token {tok!r}")
    if current:
        polygons.append(np.array(current))
    return polygons
