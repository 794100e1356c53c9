"""Advisory topology checks for finalized meshes.

The checks never modify the mesh and never raise for what they find; every
finding is returned as a ``TopologyIssue``. A Delaunay triangulation of the
node cloud, computed independently of the mesh connectivity, serves as a
geometric reference for the connectivity heuristic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import Delaunay, QhullError, cKDTree

from schism_hgrid.exceptions import MeshStateError
from schism_hgrid.geometry.polygon import polyline_is_simple, signed_areas
from schism_hgrid.mesh.model import BoundaryKind, Edge, Mesh

DEFAULT_DUPLICATE_TOLERANCE = 1e-8
DEFAULT_CONNECTIVITY_THRESHOLD = 0.5


class TopologyIssue:
    """Base class of advisory findings."""

    kind: ClassVar[str] = "issue"

    def describe(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return f"{self.kind}: {self.describe()}"


@dataclass(frozen=True)
class DuplicateNode(TopologyIssue):
    """Nodes lying within the duplicate tolerance of each other."""

    node_ids: tuple[int, ...]
    kind: ClassVar[str] = "duplicate-node"

    def describe(self) -> str:
        return f"nodes {list(self.node_ids)} share the same location"


@dataclass(frozen=True)
class BadWinding(TopologyIssue):
    """Element whose node order gives a non-positive signed area."""

    element_id: int
    area: float
    kind: ClassVar[str] = "bad-winding"

    def describe(self) -> str:
        return f"element {self.element_id} has signed area {self.area:.6g}"


@dataclass(frozen=True)
class SelfIntersectingBoundary(TopologyIssue):
    """Boundary segment whose polyline crosses itself."""

    boundary: BoundaryKind
    segment: int
    kind: ClassVar[str] = "self-intersecting-boundary"

    def describe(self) -> str:
        return f"{self.boundary.value} boundary {self.segment + 1} crosses itself"


@dataclass(frozen=True)
class SuspectConnectivity(TopologyIssue):
    """Element whose sides are mostly absent from the reference triangulation."""

    element_id: int
    score: float
    kind: ClassVar[str] = "suspect-connectivity"

    def describe(self) -> str:
        return (
            f"element {self.element_id}: {self.score:.0%} of its sides are not "
            f"Delaunay edges"
        )


@dataclass(frozen=True)
class BoundaryGap(TopologyIssue):
    """Perimeter edges not covered by any boundary segment."""

    edges: tuple[Edge, ...]
    kind: ClassVar[str] = "boundary-gap"

    def describe(self) -> str:
        shown = ", ".join(str(e) for e in self.edges[:5])
        more = f" and {len(self.edges) - 5} more" if len(self.edges) > 5 else ""
        return f"perimeter edges without a boundary: {shown}{more}"


def find_duplicate_nodes(mesh: Mesh, tolerance: float) -> list[DuplicateNode]:
    """Group nodes closer than ``tolerance``, transitively."""
    xy = mesh.xy
    if len(xy) < 2:
        return []
    pairs = cKDTree(xy).query_pairs(r=tolerance, output_type="ndarray")
    if len(pairs) == 0:
        return []

    n = len(xy)
    graph = coo_matrix(
        (np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])), shape=(n, n)
    )
    _, labels = connected_components(graph, directed=False)
    node_ids = mesh.node_ids
    involved = np.unique(pairs)
    groups: dict[int, list[int]] = {}
    for row in involved:
        groups.setdefault(int(labels[row]), []).append(int(node_ids[row]))
    issues = [DuplicateNode(tuple(sorted(ids))) for ids in groups.values()]
    return sorted(issues, key=lambda issue: issue.node_ids)


def find_bad_winding(mesh: Mesh) -> list[BadWinding]:
    """Return elements with non-positive signed area, in element order."""
    issues = []
    xy = mesh.xy
    by_arity: dict[int, list] = {3: [], 4: []}
    for element in mesh.elements():
        by_arity[element.n_nodes].append(element)
    for elements in by_arity.values():
        if not elements:
            continue
        connectivity = np.array(
            [[mesh.node_position(n) for n in e.node_ids] for e in elements],
            dtype=int,
        )
        areas = signed_areas(xy, connectivity)
        issues.extend(
            BadWinding(e.id, float(a)) for e, a in zip(elements, areas) if not a > 0
        )
    return sorted(issues, key=lambda issue: issue.element_id)


def find_self_intersecting_boundaries(mesh: Mesh) -> list[SelfIntersectingBoundary]:
    """Return boundary segments whose polyline is not simple."""
    issues = []
    for kind, segments in mesh.boundary_segments().items():
        for segment in segments:
            if not polyline_is_simple(mesh.boundary_coords(segment)):
                issues.append(SelfIntersectingBoundary(kind, segment.index))
    return issues


def delaunay_edges(
    xy: np.ndarray,
    logger: logging.Logger | None = None,
) -> tuple[set[Edge], np.ndarray] | None:
    """Triangulate a point cloud and return its edges.

    Coincident points are merged by Qhull; the returned representative array
    maps every input row to the row of the vertex that stands for it.

    Returns:
        (edges as sorted row pairs, representative rows), or None when the
        point set cannot be triangulated (fewer than three points or all
        collinear).
    """
    log = logger or logging.getLogger(__name__)
    if len(xy) < 3:
        log.debug("Skipping Delaunay reference: fewer than three nodes")
        return None
    try:
        tri = Delaunay(xy)
    except QhullError as e:
        log.debug(f"Skipping Delaunay reference: degenerate node set ({e})")
        return None

    representative = np.arange(len(xy))
    if len(tri.coplanar):
        representative[tri.coplanar[:, 0]] = tri.coplanar[:, 2]

    simplices = tri.simplices
    pairs = np.concatenate(
        [simplices[:, [0, 1]], simplices[:, [1, 2]], simplices[:, [2, 0]]]
    )
    pairs = np.unique(np.sort(pairs, axis=1), axis=0)
    return {(int(a), int(b)) for a, b in pairs}, representative


def find_suspect_connectivity(
    mesh: Mesh,
    threshold: float,
    logger: logging.Logger | None = None,
) -> list[SuspectConnectivity]:
    """Compare each element's sides with the Delaunay reference.

    The score of an element is the fraction of its sides (three for a
    triangle, four for a quad; quad diagonals are ignored) that are not
    Delaunay edges. Elements scoring above ``threshold`` are reported.
    """
    reference = delaunay_edges(mesh.xy, logger)
    if reference is None:
        return []
    edges, representative = reference

    issues = []
    for element in mesh.elements():
        rows = [int(representative[mesh.node_position(n)]) for n in element.node_ids]
        k = len(rows)
        missing = 0
        for i in range(k):
            a, b = rows[i], rows[(i + 1) % k]
            if a != b and (min(a, b), max(a, b)) not in edges:
                missing += 1
        score = missing / k
        if score > threshold:
            issues.append(SuspectConnectivity(element.id, score))
    return issues


def find_boundary_gaps(mesh: Mesh) -> list[BoundaryGap]:
    """Report perimeter edges left uncovered when boundaries are declared."""
    segments = [s for group in mesh.boundary_segments().values() for s in group]
    if not segments:
        return []
    covered = {edge for s in segments for edge in s.edges()}
    gaps = sorted(mesh.perimeter_edges() - covered)
    return [BoundaryGap(tuple(gaps))] if gaps else []


def validate(
    mesh: Mesh,
    duplicate_tolerance: float = DEFAULT_DUPLICATE_TOLERANCE,
    connectivity_threshold: float = DEFAULT_CONNECTIVITY_THRESHOLD,
    logger: logging.Logger | None = None,
) -> list[TopologyIssue]:
    """Run all topology checks on a finalized mesh.

    Issues are ordered by check: duplicate nodes, bad winding,
    self-intersecting boundaries, suspect connectivity, boundary gaps.

    Args:
        mesh: Finalized mesh; it is not modified.
        duplicate_tolerance: Distance under which two nodes are duplicates.
        connectivity_threshold: Fraction of non-Delaunay sides above which an
            element is reported.
        logger: Diagnostics sink.

    Returns:
        Advisory issues, possibly empty.

    Raises:
        MeshStateError: If the mesh is not finalized.
    """
    if not mesh.is_finalized:
        raise MeshStateError("Validation requires a finalized mesh")
    if duplicate_tolerance <= 0:
        raise ValueError("duplicate_tolerance must be positive")
    if not 0.0 <= connectivity_threshold <= 1.0:
        raise ValueError("connectivity_threshold must be within [0, 1]")

    log = logger or logging.getLogger(__name__)
    issues: list[TopologyIssue] = []
    issues.extend(find_duplicate_nodes(mesh, duplicate_tolerance))
    issues.extend(find_bad_winding(mesh))
    issues.extend(find_self_intersecting_boundaries(mesh))
    issues.extend(find_suspect_connectivity(mesh, connectivity_threshold, log))
    issues.extend(find_boundary_gaps(mesh))

    log.info(f"Topology validation of {mesh.name!r} found {len(issues)} issue(s)")
    for issue in issues:
        log.debug(str(issue))
    return issues
