"""
Tests for marching-squares contour tracing.
"""

import numpy as np
import pytest

from snaptrace.contour import MS_LOOKUP, polygon_area, trace_label, trace_labels, trace_mask


def block(h, w, y0, x0, bh, bw):
    mask = np.zeros((h, w), dtype=bool)
    mask[y0:y0 + bh, x0:x0 + bw] = True
    return mask


class TestLookup:
    """Test the case table."""

    def test_table_shape(self):
        assert len(MS_LOOKUP) == 16
        assert MS_LOOKUP[0] == [] and MS_LOOKUP[15] == []
        for case in (5, 10):
            assert len(MS_LOOKUP[case]) == 4

    def test_polygon_area(self):
        square = np.array([[0, 0], [2, 0], [2, 2], [0, 2]], dtype=float)
        assert polygon_area(square) == 4.0
        assert polygon_area(square[:2]) == 0.0


class TestTraceMask:
    """Test loop extraction from masks."""

    def test_empty_mask(self):
        assert trace_mask(np.zeros((4, 4), dtype=bool)) == []

    def test_rectangle_area(self):
        """Test that a w x h block traces to a loop of area w*h - 0.5."""
        loops = trace_mask(block(10, 10, 2, 3, 4, 5))
        assert len(loops) == 1
        assert polygon_area(loops[0]) == pytest.approx(19.5)

    def test_coordinates_follow_pixel_centers(self):
        """Test that pixel i is centered at i + 0.5."""
        loop = trace_mask(block(10, 10, 2, 3, 4, 5))[0]
        assert loop[:, 0].min() == pytest.approx(3.0)
        assert loop[:, 0].max() == pytest.approx(8.0)
        assert loop[:, 1].min() == pytest.approx(2.0)
        assert loop[:, 1].max() == pytest.approx(6.0)

    def test_single_pixel_is_diamond(self):
        loops = trace_mask(block(3, 3, 1, 1, 1, 1))
        assert len(loops) == 1
        assert len(loops[0]) == 4
        assert polygon_area(loops[0]) == pytest.approx(0.5)

    def test_noise_threshold_is_inclusive(self):
        mask = block(6, 6, 1, 1, 3, 3)
        assert len(trace_mask(mask, 8.5)) == 1
        assert trace_mask(mask, 8.6) == []

    def test_hole_gives_second_loop(self):
        mask = block(14, 14, 2, 2, 10, 10)
        mask[5:9, 5:9] = False
        areas = sorted(polygon_area(loop) for loop in trace_mask(mask))
        assert areas == pytest.approx([15.5, 99.5])

    def test_diagonal_pixels_connect(self):
        """Test that diagonal neighbors join into one loop."""
        mask = np.zeros((4, 4), dtype=bool)
        mask[1, 1] = mask[2, 2] = True
        assert len(trace_mask(mask)) == 1

    def test_two_separate_blocks(self):
        mask = block(10, 20, 1, 1, 3, 3) | block(10, 20, 5, 10, 4, 4)
        assert len(trace_mask(mask)) == 2

    def test_loops_step_between_edge_midpoints(self):
        """Test that each step crosses one marching-squares cell."""
        loop = trace_mask(block(8, 8, 1, 1, 5, 3))[0]
        steps = np.abs(np.diff(np.vstack([loop, loop[:1]]), axis=0))
        allowed = {(1.0, 0.0), (0.0, 1.0), (0.5, 0.5)}
        assert {tuple(s) for s in steps.tolist()} <= allowed


class TestTraceLabels:
    """Test label-map tracing with bounding-box crops."""

    def test_offset_restored(self):
        labels = np.zeros((20, 30), dtype=np.uint8)
        labels[10:14, 20:25] = 3
        loop = trace_label(labels, 3)[0]
        assert loop[:, 0].min() == pytest.approx(20.0)
        assert loop[:, 1].max() == pytest.approx(14.0)

    def test_missing_label(self):
        assert trace_label(np.zeros((5, 5), dtype=np.uint8), 7) == []

    def test_trace_labels_dict(self):
        labels = np.zeros((12, 12), dtype=np.uint8)
        labels[2:6, 2:6] = 1
        labels[8:11, 8:11] = 2
        result = trace_labels(labels, [1, 2], noise_threshold=9)
        assert set(result) == {1, 2}
        assert len(result[1]) == 1
        assert result[2] == []
