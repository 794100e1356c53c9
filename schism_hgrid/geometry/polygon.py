"""Planar polygon and polyline helpers used by the mesh checks."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from shapely.geometry import LineString


def signed_area(coords: np.ndarray | Sequence[tuple[float, float]]) -> float:
    """Return the signed area of a closed polygon (shoelace formula).

    Positive for counter-clockwise vertex order, negative for clockwise and
    zero for degenerate rings.

    Args:
        coords: Vertices as an array of shape (n, 2). The ring is closed
            implicitly; do not repeat the first vertex.

    Returns:
        Signed area in coordinate units squared.
    """
    xy = np.asarray(coords, dtype=float)
    if xy.ndim != 2 or xy.shape[1] != 2:
        raise ValueError("coords must have shape (n, 2)")
    if len(xy) < 3:
        return 0.0
    x = xy[:, 0]
    y = xy[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def signed_areas(xy: np.ndarray, connectivity: np.ndarray) -> np.ndarray:
    """Vectorised signed area for a batch of equal-sized cells.

    Args:
        xy: Node coordinates, shape (n_nodes, 2).
        connectivity: Zero-based node indices, shape (n_cells, k).

    Returns:
        Signed areas, shape (n_cells,).
    """
    x = xy[connectivity, 0]
    y = xy[connectivity, 1]
    x_next = np.roll(x, -1, axis=1)
    y_next = np.roll(y, -1, axis=1)
    return 0.5 * np.sum(x * y_next - x_next * y, axis=1)


def is_ccw(coords: np.ndarray | Sequence[tuple[float, float]]) -> bool:
    """Return True if the ring has strictly positive signed area."""
    return signed_area(coords) > 0.0


def polyline_is_simple(coords: np.ndarray | Sequence[tuple[float, float]]) -> bool:
    """Return True if the polyline does not cross or touch itself.

    A polyline whose first and last vertex coincide is treated as a ring and
    is simple when the ring is.
    """
    xy = np.asarray(coords, dtype=float)
    if len(xy) < 3:
        return True
    return LineString(xy).is_simple


