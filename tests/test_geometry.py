"""Tests for planar geometry helpers."""

import numpy as np
import pytest

from schism_hgrid.geometry import (
    is_ccw,
    polyline_is_simple,
    signed_area,
    signed_areas,
)


class TestSignedArea:
    """Tests for shoelace areas."""

    def test_counter_clockwise_square(self):
        """Test a counter-clockwise ring has positive area."""
        square = [(0, 0), (2, 0), (2, 2), (0, 2)]

        assert signed_area(square) == pytest.approx(4.0)
        assert is_ccw(square)

    def test_clockwise_triangle(self):
        """Test a clockwise ring has negative area."""
        triangle = [(0, 0), (0, 1), (1, 0)]

        assert signed_area(triangle) == pytest.approx(-0.5)
        assert not is_ccw(triangle)

    def test_degenerate(self):
        """Test collinear and short rings have zero area."""
        assert signed_area([(0, 0), (1, 1), (2, 2)]) == 0.0
        assert signed_area([(0, 0), (1, 1)]) == 0.0

    def test_bad_shape(self):
        """Test coordinates must be two-dimensional points."""
        with pytest.raises(ValueError):
            signed_area([(0, 0, 0), (1, 0, 0), (0, 1, 0)])

    def test_batch(self):
        """Test batched areas match the scalar version."""
        xy = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=float)
        connectivity = np.array([[0, 1, 2], [0, 2, 3], [0, 2, 1]])

        areas = signed_areas(xy, connectivity)

        np.testing.assert_allclose(areas, [0.5, 0.5, -0.5])


class TestPolylineIsSimple:
    """Tests for polyline self-intersection."""

    def test_open_polyline(self):
        """Test a polyline without crossings."""
        assert polyline_is_simple([(0, 0), (1, 0), (1, 1)])

    def test_closed_ring(self):
        """Test a closed ring is simple."""
        assert polyline_is_simple([(0, 0), (1, 0), (1, 1), (0, 0)])

    def test_crossing(self):
        """Test a figure-eight crosses itself."""
        assert not polyline_is_simple([(0, 0), (1, 1), (1, 0), (0, 1)])

    def test_two_points(self):
        """Test a single edge is always simple."""
        assert polyline_is_simple([(0, 0), (1, 0)])
