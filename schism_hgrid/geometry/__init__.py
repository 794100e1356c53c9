"""Planar geometry helpers."""

from schism_hgrid.geometry.polygon import (
    is_ccw,
    polyline_is_simple,
    signed_area,
    signed_areas,
)

__all__ = [
    "is_ccw",
    "polyline_is_simple",
    "signed_area",
    "signed_areas",
]
