"""
Snaptrace Quantization Module.

Turns a pixel buffer into a label map plus a centroid palette:
1. Seeded k-means++ over a bounded pixel sample
2. Majority filter (anti-alias) over the label map
3. Denoise pass
4. Background suppression (border flood fill or blanket match)

Also provides palette estimation helpers used to suggest a color count
and show the image's own palette.

Usage:
    from snaptrace.quantize import quantize

    result = quantize(buffer, params)
    labels, centroids = result.labels, result.centroids
"""

import logging
from collections import Counter
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from . import config
from .progress import Checkpoint, ensure
from .types import (
    Centroid,
    PaletteItem,
    PixelBuffer,
    QuantizeResult,
    TracerParams,
    hex_to_rgb,
    rgb_to_hex,
)

logger = logging.getLogger(__name__)

SENTINEL = config.BACKGROUND_SENTINEL

# (top, bottom, left, right): which sides of a label map are image borders.
Edges = Tuple[bool, bool, bool, bool]
ALL_EDGES: Edges = (True, True, True, True)


# ============================================================================
# DETERMINISTIC RANDOMNESS
# ============================================================================

class SeededRandom:
    """Linear congruential generator; same seed, same clusters."""

    def __init__(self, seed: int = config.KMEANS_SEED):
        self.seed = seed

    def next(self) -> float:
        self.seed = (self.seed * 9301 + 49297) % 233280
        return self.seed / 233280

    def index(self, n: int) -> int:
        return int(self.next() * n)


# ============================================================================
# K-MEANS
# ============================================================================

def sample_budget(pixel_count: int) -> int:
    """Number of pixels sampled for clustering; denser for small images."""
    for limit, budget in config.SAMPLE_BUDGETS:
        if pixel_count < limit:
            return budget
    return config.SAMPLE_BUDGET_LARGE


def collect_samples(buffer: PixelBuffer, max_samples: Optional[int] = None) -> np.ndarray:
    """Strided sample of visible pixels as an (N, 3) int32 array."""
    flat = buffer.data.reshape(-1, 4)
    budget = max_samples or sample_budget(flat.shape[0])
    step = max(1, flat.shape[0] // budget)
    sample = flat[::step]
    sample = sample[sample[:, 3] >= config.VISIBLE_ALPHA]
    return sample[:, :3].astype(np.int32)


def _squared_distances(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    diff = points[:, None, :] - centroids[None, :, :]
    return np.einsum('ijk,ijk->ij', diff, diff)


def _init_centroids(samples: np.ndarray, k: int, rng: SeededRandom) -> np.ndarray:
    """k-means++ seeding with a bounded candidate pool."""
    centroids = [samples[rng.index(len(samples))]]
    for _ in range(1, k):
        current = np.array(centroids, dtype=np.int32)
        best_dist = -1
        best = samples[0]
        for _ in range(config.KMEANS_CANDIDATES):
            candidate = samples[rng.index(len(samples))]
            dist = int(_squared_distances(candidate[None, :], current).min())
            if dist > best_dist:
                best_dist = dist
                best = candidate
        centroids.append(best)
    return np.array(centroids, dtype=np.int32)


def _lloyd(samples: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Lloyd iterations; a centroid only moves when some channel shifts by more than 1."""
    k = len(centroids)
    for _ in range(config.KMEANS_ITERATIONS):
        assignment = _squared_distances(samples, centroids).argmin(axis=1)
        counts = np.bincount(assignment, minlength=k)
        changed = False
        for j in range(k):
            if counts[j] == 0:
                continue
            members = samples[assignment == j]
            mean = members.sum(axis=0) // counts[j]
            if np.any(np.abs(mean - centroids[j]) > 1):
                centroids[j] = mean
                changed = True
        if not changed:
            break
    return centroids


def label_pixels(
    buffer: PixelBuffer,
    centroids: np.ndarray,
    checkpoint: Optional[Checkpoint] = None,
) -> np.ndarray:
    """Assign every pixel to its nearest centroid; invisible pixels get the sentinel."""
    checkpoint = ensure(checkpoint)
    flat = buffer.data.reshape(-1, 4)
    n = flat.shape[0]
    labels = np.full(n, SENTINEL, dtype=np.uint8)
    chunk = config.KMEANS_LABEL_CHUNK

    for start in range(0, n, chunk):
        if start % (chunk * 5) == 0:
            checkpoint("label", start / n)
        end = min(n, start + chunk)
        block = flat[start:end]
        visible = block[:, 3] >= config.VISIBLE_ALPHA
        if not visible.any():
            continue
        dist = _squared_distances(block[visible, :3].astype(np.int32), centroids)
        out = labels[start:end]
        out[visible] = dist.argmin(axis=1).astype(np.uint8)

    return labels.reshape(buffer.height, buffer.width)


def kmeans(buffer: PixelBuffer, k: int, checkpoint: Optional[Checkpoint] = None) -> QuantizeResult:
    """
    Cluster pixels in RGB space.

    Args:
        buffer: Pixels to cluster
        k: Requested cluster count; clamped to the distinct sampled colors

    Returns:
        QuantizeResult with a full-resolution label map
    """
    checkpoint = ensure(checkpoint)
    samples = collect_samples(buffer)
    if len(samples) == 0:
        logger.debug("No visible pixels, skipping clustering")
        labels = np.full((buffer.height, buffer.width), SENTINEL, dtype=np.uint8)
        return QuantizeResult(labels, [])

    distinct = len(np.unique(samples, axis=0))
    safe_k = max(min(config.MIN_COLORS, distinct), min(k, distinct, config.MAX_COLORS))

    rng = SeededRandom(config.KMEANS_SEED)
    centroids = _init_centroids(samples, safe_k, rng)
    centroids = _lloyd(samples, centroids)
    checkpoint("kmeans", 0.0)

    labels = label_pixels(buffer, centroids, checkpoint)
    logger.debug("k-means: %d samples, %d distinct, k=%d", len(samples), distinct, safe_k)
    return QuantizeResult(labels, [Centroid(*map(int, c)) for c in centroids])


# ============================================================================
# LABEL FILTERS
# ============================================================================

def _neighbor_votes(labels: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Count each label among the 8 neighbors of every pixel.

    Returns:
        (dominant neighbor label, its count, count of the pixel's own label)
    """
    best_label = labels.copy()
    best_count = np.zeros(labels.shape, dtype=np.int16)
    own_count = np.zeros(labels.shape, dtype=np.int16)

    for value in np.unique(labels):
        mask = (labels == value).astype(np.uint8)
        window = cv2.boxFilter(mask, -1, (3, 3), normalize=False, borderType=cv2.BORDER_CONSTANT)
        neighbors = window.astype(np.int16) - mask
        better = neighbors > best_count
        best_count[better] = neighbors[better]
        best_label[better] = value
        own = mask.astype(bool)
        own_count[own] = neighbors[own]

    return best_label, best_count, own_count


def _interior(shape: Tuple[int, int]) -> np.ndarray:
    inner = np.zeros(shape, dtype=bool)
    inner[1:-1, 1:-1] = True
    return inner


def majority_filter(
    labels: np.ndarray,
    iterations: int = config.ANTI_ALIAS_ITERATIONS,
    quorum: int = config.ANTI_ALIAS_QUORUM,
    checkpoint: Optional[Checkpoint] = None,
) -> np.ndarray:
    """
    3x3 mode filter that smooths jagged cluster boundaries.

    A pixel takes the dominant neighbor label when that label holds at least
    ``quorum`` of the 8 neighbors and strictly outnumbers the pixel's own
    label among them. Centroids are not touched.
    """
    checkpoint = ensure(checkpoint)
    if labels.shape[0] < 3 or labels.shape[1] < 3:
        return labels.copy()

    out = labels.copy()
    inner = _interior(labels.shape)
    for i in range(iterations):
        checkpoint("anti_alias", i / max(1, iterations))
        best_label, best_count, own_count = _neighbor_votes(out)
        change = inner & (best_label != out) & (best_count >= quorum) & (best_count > own_count)
        if not change.any():
            break
        out = np.where(change, best_label, out).astype(np.uint8)
    return out


def denoise_threshold(strength: float) -> int:
    """Neighbor majority needed to overwrite a pixel; tightens as strength rises."""
    if strength > config.DENOISE_STRONG_ABOVE:
        return config.DENOISE_THRESHOLD_HIGH
    return config.DENOISE_THRESHOLD_LOW


def denoise(labels: np.ndarray, strength: float, checkpoint: Optional[Checkpoint] = None) -> np.ndarray:
    """Single 3x3 mode pass; strength 0 is a no-op."""
    if strength <= 0 or labels.shape[0] < 3 or labels.shape[1] < 3:
        return labels.copy()
    ensure(checkpoint)("denoise", 0.0)
    threshold = denoise_threshold(strength)
    best_label, best_count, _ = _neighbor_votes(labels)
    change = _interior(labels.shape) & (best_label != labels) & (best_count >= threshold)
    return np.where(change, best_label, labels).astype(np.uint8)


# ============================================================================
# BACKGROUND
# ============================================================================

def border_pixels(buffer: PixelBuffer) -> np.ndarray:
    """RGBA pixels on the image border, as an (N, 4) array."""
    data = buffer.data
    if buffer.height <= 2 or buffer.width <= 2:
        return data.reshape(-1, 4)
    return np.concatenate([
        data[0, :], data[-1, :], data[1:-1, 0], data[1:-1, -1],
    ])


def detect_background_color(buffer: PixelBuffer) -> Optional[Tuple[int, int, int]]:
    """
    Dominant color along the image border.

    Border pixels are binned to COLOR_BIN levels per channel; the winning bin's
    pixels are averaged.
    """
    border = border_pixels(buffer)
    border = border[border[:, 3] >= config.VISIBLE_ALPHA][:, :3].astype(np.int32)
    if len(border) == 0:
        return None
    bins = border // config.COLOR_BIN
    keys = bins[:, 0] * 256 + bins[:, 1] * 16 + bins[:, 2]
    winner, _ = Counter(keys.tolist()).most_common(1)[0]
    members = border[keys == winner]
    return tuple(int(round(c)) for c in members.mean(axis=0))


def background_labels(
    centroids: Sequence[Centroid],
    target: Tuple[int, int, int],
    threshold: float = config.BACKGROUND_DISTANCE,
) -> List[int]:
    """Indices of centroids within ``threshold`` RGB distance of ``target``."""
    target = np.array(target, dtype=np.float64)
    found = []
    for idx, c in enumerate(centroids):
        if np.sqrt(np.sum((np.array(c.rgb, dtype=np.float64) - target) ** 2)) <= threshold:
            found.append(idx)
    return found


def suppress_background(
    labels: np.ndarray,
    background_ids: Iterable[int],
    smart: bool,
    edges: Edges = ALL_EDGES,
) -> np.ndarray:
    """
    Turn background-labelled pixels into the sentinel.

    Smart mode floods from the border pixels (4-connected) and only clears
    background regions reachable from the edge, so an enclosed region of the
    background color (an eye, a letter counter) survives. Otherwise every
    background-labelled pixel is cleared.

    ``edges`` flags which sides (top, bottom, left, right) are real image
    borders. A strip cut out of a larger image only floods from the sides it
    shares with that image.
    """
    ids = list(background_ids)
    if not ids:
        return labels.copy()
    mask = np.isin(labels, ids)
    if not smart:
        return np.where(mask, SENTINEL, labels).astype(np.uint8)

    count, components = cv2.connectedComponents(mask.astype(np.uint8), connectivity=4)
    if count <= 1:
        return labels.copy()
    top, bottom, left, right = edges
    sides = [components[0, :]] if top else []
    if bottom:
        sides.append(components[-1, :])
    if left:
        sides.append(components[:, 0])
    if right:
        sides.append(components[:, -1])
    if not sides:
        return labels.copy()
    edge = np.concatenate(sides)
    seeds = np.unique(edge[edge > 0])
    reachable = np.isin(components, seeds) & mask
    return np.where(reachable, SENTINEL, labels).astype(np.uint8)


# ============================================================================
# ORCHESTRATION
# ============================================================================

def background_target(buffer: PixelBuffer, params: TracerParams) -> Tuple[int, int, int]:
    """Explicit background color if set, else the edge-sampled dominant color."""
    if params.background_color:
        return hex_to_rgb(params.background_color)
    detected = detect_background_color(buffer)
    if detected is None:
        return hex_to_rgb(config.DEFAULT_BACKGROUND)
    return detected


def refine_labels(
    buffer: PixelBuffer,
    base: QuantizeResult,
    params: TracerParams,
    checkpoint: Optional[Checkpoint] = None,
    edges: Edges = ALL_EDGES,
) -> QuantizeResult:
    """Anti-alias, denoise and background suppression over a clustered label map."""
    labels = base.labels
    if params.anti_alias and params.anti_alias_iterations > 0:
        labels = majority_filter(labels, params.anti_alias_iterations, checkpoint=checkpoint)
    labels = denoise(labels, params.noise, checkpoint)

    if params.ignore_background and base.centroids:
        target = background_target(buffer, params)
        ids = background_labels(base.centroids, target)
        if ids:
            logger.debug("Background %s matches labels %s (smart=%s)",
                         rgb_to_hex(target), ids, params.smart_background)
        labels = suppress_background(labels, ids, params.smart_background, edges)

    return QuantizeResult(labels, list(base.centroids))


def quantize(
    buffer: PixelBuffer,
    params: TracerParams,
    checkpoint: Optional[Checkpoint] = None,
) -> QuantizeResult:
    """Cluster and clean up a buffer according to ``params``."""
    base = kmeans(buffer, params.effective_colors, checkpoint)
    return refine_labels(buffer, base, params, checkpoint)


# ============================================================================
# PALETTE HELPERS
# ============================================================================

def _binned_sample(buffer: PixelBuffer, sample_size: int = 5000) -> np.ndarray:
    flat = buffer.data.reshape(-1, 4)
    step = max(1, flat.shape[0] // sample_size)
    sample = flat[::step]
    return sample[sample[:, 3] >= config.VISIBLE_ALPHA][:, :3].astype(np.int32)


def estimate_colors(buffer: PixelBuffer) -> int:
    """
    Suggest a color count for an image.

    Counts 16-level color bins that hold more than 0.5% of a sparse sample,
    clamped to [4, 64]. Returns 2 for a fully transparent image.
    """
    sample = _binned_sample(buffer)
    if len(sample) == 0:
        return 2
    binned = np.rint(sample / config.COLOR_BIN).astype(np.int32)
    _, counts = np.unique(binned, axis=0, return_counts=True)
    distinct = int(np.sum(counts > len(sample) * 0.005))
    return max(4, min(distinct, config.MAX_COLORS))


def extract_palette(buffer: PixelBuffer, max_colors: Optional[int] = None) -> Tuple[int, List[PaletteItem]]:
    """
    The image's own dominant colors.

    Returns:
        Tuple of (suggested color count, palette sorted by sample count)
    """
    color_count = estimate_colors(buffer)
    sample = _binned_sample(buffer)
    if len(sample) == 0:
        return color_count, []

    binned = np.rint(sample / config.COLOR_BIN).astype(np.int32)
    keys, inverse, counts = np.unique(binned, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.ravel()
    order = np.argsort(-counts, kind='stable')[:max_colors or color_count]

    palette = []
    for idx in order:
        members = sample[inverse == idx]
        r, g, b = (int(round(c)) for c in members.mean(axis=0))
        palette.append(PaletteItem(
            hex=rgb_to_hex((r, g, b)), r=r, g=g, b=b,
            pixel_count=int(counts[idx]),
            ratio=float(counts[idx]) / len(sample),
        ))
    return color_count, palette


def map_to_palette(hex_color: str, targets: Sequence[str]) -> str:
    """Nearest target color by squared RGB distance (palette lock)."""
    src = np.array(hex_to_rgb(hex_color))
    best = targets[0]
    best_dist = None
    for target in targets:
        dist = int(np.sum((src - np.array(hex_to_rgb(target))) ** 2))
        if best_dist is None or dist < best_dist:
            best, best_dist = target, dist
    return best
