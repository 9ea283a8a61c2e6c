"""
Tests for buffers, parameters and result types.
"""

import numpy as np
import pytest

from snaptrace import ColorMode, InputError, PixelBuffer, TracerParams, VectorPath
from snaptrace.types import _fmt, hex_to_rgb, rgb_to_hex


class TestPixelBuffer:
    """Test buffer construction and validation."""

    def test_from_bytes(self):
        """Test wrapping interleaved RGBA bytes."""
        buf = PixelBuffer.from_bytes(2, 1, bytes([1, 2, 3, 255, 4, 5, 6, 128]))
        assert (buf.width, buf.height) == (2, 1)
        assert buf.data[0, 1].tolist() == [4, 5, 6, 128]

    def test_from_bytes_wrong_length(self):
        with pytest.raises(InputError):
            PixelBuffer.from_bytes(2, 2, bytes(15))

    def test_zero_dimensions_rejected(self):
        with pytest.raises(InputError):
            PixelBuffer.from_bytes(0, 4, b"")
        with pytest.raises(InputError):
            PixelBuffer(np.zeros((0, 3, 4), dtype=np.uint8))

    def test_from_rgb_array_is_opaque(self):
        buf = PixelBuffer.from_array(np.zeros((3, 4, 3), dtype=np.uint8))
        assert buf.data.shape == (3, 4, 4)
        assert np.all(buf.alpha == 255)

    def test_buffer_is_immutable_copy(self):
        """Test that the buffer owns a read-only copy of its pixels."""
        raw = np.zeros((2, 2, 4), dtype=np.uint8)
        buf = PixelBuffer(raw)
        raw[0, 0, 0] = 99
        assert buf.data[0, 0, 0] == 0
        with pytest.raises(ValueError):
            buf.data[0, 0, 0] = 1

    def test_identity_tracks_content(self):
        a = PixelBuffer(np.zeros((2, 2, 4), dtype=np.uint8))
        b = PixelBuffer(np.zeros((2, 2, 4), dtype=np.uint8))
        c = PixelBuffer(np.ones((2, 2, 4), dtype=np.uint8))
        assert a.identity == b.identity
        assert a.identity != c.identity

    def test_crop(self):
        data = np.arange(4 * 4 * 4, dtype=np.uint8).reshape(4, 4, 4)
        buf = PixelBuffer(data).crop(1, 2, 2, 2)
        assert (buf.width, buf.height) == (2, 2)
        assert buf.data[0, 0].tolist() == data[2, 1].tolist()
        with pytest.raises(InputError):
            PixelBuffer(data).crop(3, 3, 2, 2)


class TestTracerParams:
    """Test parameter validation and documented clamps."""

    def test_defaults(self):
        params = TracerParams()
        assert params.colors == 32
        assert params.sampling == 1
        assert params.color_mode == ColorMode.color

    @pytest.mark.parametrize("colors", [1, 65, 0, -3])
    def test_colors_out_of_range(self, colors):
        with pytest.raises(InputError):
            TracerParams(colors=colors)

    def test_sampling_must_be_level(self):
        with pytest.raises(InputError):
            TracerParams(sampling=3)

    def test_paths_out_of_range(self):
        with pytest.raises(InputError):
            TracerParams(paths=101)

    @pytest.mark.parametrize("field,value", [
        ("paths", "50"),
        ("noise", None),
        ("corners", "sharp"),
        ("blur", [1]),
        ("sampling", True),
        ("colors", None),
    ])
    def test_wrong_type_rejected(self, field, value):
        with pytest.raises(InputError):
            TracerParams(**{field: value})

    def test_wrong_type_from_dict(self):
        with pytest.raises(InputError):
            TracerParams.from_dict({"paths": "50", "colorMode": "color"})

    def test_noise_and_corners_are_clamped(self):
        params = TracerParams(noise=250, corners=-5)
        assert params.noise == 100
        assert params.corners == 0

    def test_binary_mode_uses_two_colors(self):
        assert TracerParams(colors=16, color_mode="binary").effective_colors == 2

    def test_unknown_color_mode(self):
        with pytest.raises(InputError):
            TracerParams(color_mode="sepia")

    def test_scaled_noise(self):
        assert TracerParams(noise=10, sampling=2).scaled_noise == 40

    def test_colors_normalized(self):
        params = TracerParams(background_color="FFF", palette=["#FF0000", "00ff00"])
        assert params.background_color == "#ffffff"
        assert params.palette == ("#ff0000", "#00ff00")

    def test_from_dict_accepts_ui_keys(self):
        """Test that camelCase keys from a UI map onto fields."""
        params = TracerParams.from_dict({
            "colors": 8,
            "ignoreWhite": False,
            "smartBackground": False,
            "colorMode": "grayscale",
            "palette": ["#112233"],
            "usePaletteMapping": False,
            "unknownKey": 1,
        })
        assert params.colors == 8
        assert params.ignore_background is False
        assert params.smart_background is False
        assert params.color_mode == ColorMode.grayscale
        assert params.palette is None

    def test_params_are_hashable(self):
        """Test that params double as cache keys."""
        assert hash(TracerParams(colors=8)) == hash(TracerParams(colors=8))


class TestHelpers:
    """Test color and number formatting helpers."""

    def test_hex_round_trip(self):
        assert hex_to_rgb("#0a0B0c") == (10, 11, 12)
        assert rgb_to_hex((10, 11, 12)) == "#0a0b0c"

    def test_bad_hex(self):
        with pytest.raises(InputError):
            hex_to_rgb("#12")
        with pytest.raises(InputError):
            hex_to_rgb("#zzzzzz")

    def test_fmt(self):
        assert _fmt(1.0) == "1"
        assert _fmt(1.239) == "1.24"
        assert _fmt(-0.001) == "0"

    def test_transform(self):
        path = VectorPath("p", "M 0 0 Z", "#000000")
        assert path.transform is None
        moved = path.translated(10, 2.5)
        assert moved.transform == "translate(10,2.5)"
        assert moved.to_dict()["offsetX"] == 10
