"""
Core types for the tracing pipeline.

Buffers and parameters are immutable values: every stage produces a new
buffer, and a parameter set doubles as a cache key.
"""

import hashlib
import numbers
from dataclasses import dataclass, field, replace as dc_replace
from enum import Enum
from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from . import config
from .errors import InputError


# ============================================================================
# COLOR HELPERS
# ============================================================================

def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    """Convert hex color to RGB tuple."""
    if not isinstance(hex_color, str):
        raise InputError(f"Invalid hex color: {hex_color!r}")
    value = hex_color.strip().lstrip('#')
    if len(value) == 3:
        value = ''.join(c * 2 for c in value)
    if len(value) != 6:
        raise InputError(f"Invalid hex color: {hex_color!r}")
    try:
        return tuple(int(value[i:i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        raise InputError(f"Invalid hex color: {hex_color!r}") from None


def rgb_to_hex(rgb) -> str:
    """Convert RGB tuple to hex color."""
    return '#{:02x}{:02x}{:02x}'.format(*(int(c) for c in rgb[:3]))


# ============================================================================
# PIXEL BUFFER
# ============================================================================

@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """RGBA pixels, row-major, shape (height, width, 4), dtype uint8."""
    data: np.ndarray

    def __post_init__(self):
        data = self.data
        if not isinstance(data, np.ndarray) or data.ndim != 3 or data.shape[2] != 4:
            raise InputError("PixelBuffer expects an (H, W, 4) array")
        if data.shape[0] == 0 or data.shape[1] == 0:
            raise InputError(f"Empty pixel buffer ({data.shape[1]}x{data.shape[0]})")
        if data.dtype != np.uint8:
            data = np.clip(data, 0, 255).astype(np.uint8)
        else:
            data = np.ascontiguousarray(data)
        if data is self.data:
            data = data.copy()
        data.flags.writeable = False
        object.__setattr__(self, 'data', data)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Wrap a grayscale, RGB or RGBA array. Missing alpha is opaque."""
        array = np.asarray(array)
        if array.ndim == 2:
            array = np.stack([array] * 3, axis=2)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise InputError(f"Unsupported array shape {array.shape}")
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=array.dtype)
            array = np.concatenate([array, alpha], axis=2)
        return cls(array)

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> "PixelBuffer":
        """Wrap interleaved RGBA bytes."""
        if width <= 0 or height <= 0:
            raise InputError(f"Invalid dimensions {width}x{height}")
        expected = width * height * 4
        if len(data) != expected:
            raise InputError(f"Expected {expected} bytes for {width}x{height} RGBA, got {len(data)}")
        array = np.frombuffer(bytes(data), dtype=np.uint8).reshape(height, width, 4)
        return cls(array)

    @classmethod
    def from_image(cls, image) -> "PixelBuffer":
        """Wrap a PIL image."""
        return cls(np.array(image.convert('RGBA')))

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def rgb(self) -> np.ndarray:
        return self.data[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.data[:, :, 3]

    @cached_property
    def identity(self) -> str:
        """Content digest, used as the source identity for caches."""
        digest = hashlib.blake2b(digest_size=16)
        digest.update(f"{self.width}x{self.height}".encode())
        digest.update(self.data.tobytes())
        return digest.hexdigest()

    def crop(self, x: int, y: int, width: int, height: int) -> "PixelBuffer":
        if x < 0 or y < 0 or x + width > self.width or y + height > self.height:
            raise InputError(f"Crop {x},{y} {width}x{height} outside {self.width}x{self.height}")
        return PixelBuffer(self.data[y:y + height, x:x + width])

    def tobytes(self) -> bytes:
        return self.data.tobytes()

    def to_image(self):
        from PIL import Image
        return Image.fromarray(np.array(self.data), 'RGBA')


# ============================================================================
# PARAMETERS
# ============================================================================

class ColorMode(str, Enum):
    """Color reduction applied before clustering."""
    color = "color"
    grayscale = "grayscale"
    binary = "binary"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class TracerParams:
    """
    Tracer parameters.

    colors: target palette size (2-64)
    paths: path fitting strength, high = tight fit (0-100)
    corners: corner sharpness, high = sharp (0-100, clamped)
    noise: speckle area in source px² (0-100, clamped)
    blur: pre-blur radius in source px (0-10)
    sampling: internal upscale factor (1, 2 or 4)
    """
    colors: int = config.DEFAULT_PARAMS['colors']
    paths: float = config.DEFAULT_PARAMS['paths']
    corners: float = config.DEFAULT_PARAMS['corners']
    noise: float = config.DEFAULT_PARAMS['noise']
    blur: int = config.DEFAULT_PARAMS['blur']
    sampling: int = config.DEFAULT_PARAMS['sampling']
    ignore_background: bool = config.DEFAULT_PARAMS['ignore_background']
    background_color: Optional[str] = config.DEFAULT_PARAMS['background_color']
    smart_background: bool = config.DEFAULT_PARAMS['smart_background']
    color_mode: ColorMode = ColorMode.color
    anti_alias: bool = config.DEFAULT_PARAMS['anti_alias']
    anti_alias_iterations: int = config.DEFAULT_PARAMS['anti_alias_iterations']
    palette: Optional[Tuple[str, ...]] = config.DEFAULT_PARAMS['palette']

    def __post_init__(self):
        for name in ('colors', 'paths', 'corners', 'noise', 'blur', 'sampling', 'anti_alias_iterations'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise InputError(f"{name} must be a number, got {value!r}")
        if isinstance(self.colors, bool) or int(self.colors) != self.colors:
            raise InputError(f"colors must be an integer, got {self.colors!r}")
        if not config.MIN_COLORS <= self.colors <= config.MAX_COLORS:
            raise InputError(
                f"colors must be in [{config.MIN_COLORS}, {config.MAX_COLORS}], got {self.colors}"
            )
        if not 0 <= self.paths <= 100:
            raise InputError(f"paths must be in [0, 100], got {self.paths}")
        if self.sampling not in config.SAMPLING_LEVELS:
            raise InputError(f"sampling must be one of {config.SAMPLING_LEVELS}, got {self.sampling}")
        if not 0 <= self.blur <= config.MAX_BLUR or int(self.blur) != self.blur:
            raise InputError(f"blur must be an integer in [0, {config.MAX_BLUR}], got {self.blur}")
        if self.anti_alias_iterations < 0:
            raise InputError("anti_alias_iterations must be >= 0")

        # Documented clamps
        object.__setattr__(self, 'colors', int(self.colors))
        object.__setattr__(self, 'blur', int(self.blur))
        object.__setattr__(self, 'noise', _clamp(self.noise, 0, 100))
        object.__setattr__(self, 'corners', _clamp(self.corners, 0, 100))

        try:
            object.__setattr__(self, 'color_mode', ColorMode(self.color_mode))
        except ValueError:
            raise InputError(f"Unknown color mode: {self.color_mode!r}") from None

        if self.background_color is not None:
            object.__setattr__(self, 'background_color', rgb_to_hex(hex_to_rgb(self.background_color)))
        if self.palette is not None:
            palette = tuple(rgb_to_hex(hex_to_rgb(c)) for c in self.palette)
            object.__setattr__(self, 'palette', palette or None)

    @property
    def effective_colors(self) -> int:
        return 2 if self.color_mode == ColorMode.binary else self.colors

    @property
    def scaled_noise(self) -> float:
        """Noise area in processing pixels."""
        return self.noise * self.sampling * self.sampling

    def replace(self, **changes) -> "TracerParams":
        return dc_replace(self, **changes)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "TracerParams":
        """Build from snake_case or the camelCase keys of the UI contract."""
        aliases = {
            'ignoreWhite': 'ignore_background',
            'ignoreBackground': 'ignore_background',
            'backgroundColor': 'background_color',
            'smartBackground': 'smart_background',
            'colorMode': 'color_mode',
            'autoAntiAlias': 'anti_alias',
        }
        kwargs = {}
        for key, value in values.items():
            name = aliases.get(key, key)
            if name in cls.__dataclass_fields__:
                kwargs[name] = value
        if 'usePaletteMapping' in values and not values['usePaletteMapping']:
            kwargs.pop('palette', None)
        if kwargs.get('palette') is not None:
            kwargs['palette'] = tuple(kwargs['palette'])
        return cls(**kwargs)


# ============================================================================
# QUANTIZER OUTPUT
# ============================================================================

@dataclass(frozen=True)
class Centroid:
    """Mean RGB color of one cluster."""
    r: int
    g: int
    b: int

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.rgb)


@dataclass(frozen=True, eq=False)
class QuantizeResult:
    """Label map (one byte per pixel, 255 = background) and its centroids."""
    labels: np.ndarray
    centroids: List[Centroid] = field(default_factory=list)

    def counts(self) -> np.ndarray:
        """Pixel count per centroid index."""
        counts = np.bincount(self.labels.ravel(), minlength=256)
        return counts[:len(self.centroids)]


# ============================================================================
# OUTPUT
# ============================================================================

@dataclass(frozen=True)
class PaletteItem:
    hex: str
    r: int
    g: int
    b: int
    pixel_count: int
    ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hex': self.hex,
            'r': self.r,
            'g': self.g,
            'b': self.b,
            'pixelCount': self.pixel_count,
            'ratio': self.ratio,
        }


@dataclass(frozen=True)
class VectorPath:
    """One compound path: every loop of one color in source pixel space."""
    id: str
    path_data: str
    fill_color: str
    stroke_color: Optional[str] = None
    stroke_width: Optional[float] = None
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0

    @property
    def transform(self) -> Optional[str]:
        parts = []
        if self.offset_x or self.offset_y:
            parts.append(f"translate({_fmt(self.offset_x)},{_fmt(self.offset_y)})")
        if self.scale != 1.0:
            parts.append(f"scale({_fmt(self.scale)})")
        return ' '.join(parts) or None

    def translated(self, dx: float, dy: float) -> "VectorPath":
        return dc_replace(self, offset_x=self.offset_x + dx, offset_y=self.offset_y + dy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'pathData': self.path_data,
            'fillColor': self.fill_color,
            'strokeColor': self.stroke_color,
            'strokeWidth': self.stroke_width,
            'offsetX': self.offset_x,
            'offsetY': self.offset_y,
            'scale': self.scale,
        }


@dataclass
class TracerResult:
    """Paths in draw order (largest coverage first) and the sorted palette."""
    paths: List[VectorPath] = field(default_factory=list)
    palette: List[PaletteItem] = field(default_factory=list)
    markup: Optional[str] = None
    width: int = 0
    height: int = 0

    @classmethod
    def empty(cls, width: int = 0, height: int = 0) -> "TracerResult":
        return cls(width=width, height=height)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'paths': [p.to_dict() for p in self.paths],
            'palette': [p.to_dict() for p in self.palette],
            'svgString': self.markup,
            'width': self.width,
            'height': self.height,
        }


def _fmt(value: float, precision: int = config.COORD_PRECISION) -> str:
    """Format a coordinate: fixed precision, no trailing zeros, no -0."""
    text = f"{value:.{precision}f}".rstrip('0').rstrip('.')
    if text in ('-0', ''):
        return '0'
    return text
