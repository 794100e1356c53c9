"""Mesh model, construction, reprojection and topology checks."""

from schism_hgrid.mesh.model import (
    BoundaryKind,
    BoundarySegment,
    Element,
    Mesh,
    Node,
)
from schism_hgrid.mesh.config import BuildConfig
from schism_hgrid.mesh.builder import HgridBuilder
from schism_hgrid.mesh.reproject import (
    reproject_async,
    resolve_crs,
    transform_coordinates,
)
from schism_hgrid.mesh.validation import (
    BadWinding,
    BoundaryGap,
    DuplicateNode,
    SelfIntersectingBoundary,
    SuspectConnectivity,
    TopologyIssue,
    validate,
)

__all__ = [
    "BoundaryKind",
    "BoundarySegment",
    "Element",
    "Mesh",
    "Node",
    "BuildConfig",
    "HgridBuilder",
    "reproject_async",
    "resolve_crs",
    "transform_coordinates",
    "TopologyIssue",
    "DuplicateNode",
    "BadWinding",
    "SelfIntersectingBoundary",
    "SuspectConnectivity",
    "BoundaryGap",
    "validate",
]
