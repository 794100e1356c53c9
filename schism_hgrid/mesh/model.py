"""In-memory hgrid mesh: nodes, elements and boundary segments."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Sequence

import numpy as np

from schism_hgrid.exceptions import InvariantError, MeshStateError, Violation
from schism_hgrid.geometry.polygon import signed_area, signed_areas

Edge = tuple[int, int]


def _edge(a: int, b: int) -> Edge:
    return (a, b) if a < b else (b, a)


def _format_ids(ids: Iterable[int], limit: int = 10) -> str:
    ids = sorted(ids)
    text = ", ".join(str(i) for i in ids[:limit])
    if len(ids) > limit:
        text += f", ... ({len(ids) - limit} more)"
    return text


class BoundaryKind(str, Enum):
    """Boundary segment type."""

    OPEN = "open"
    LAND = "land"


@dataclass(frozen=True)
class Node:
    """Mesh node with planar coordinates and depth."""

    id: int
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class Element:
    """Triangle or quadrilateral given by counter-clockwise node ids."""

    id: int
    node_ids: tuple[int, ...]

    @property
    def n_nodes(self) -> int:
        return len(self.node_ids)

    @property
    def is_quad(self) -> bool:
        return len(self.node_ids) == 4

    def edges(self) -> list[Edge]:
        """Return the element sides as sorted node-id pairs."""
        ids = self.node_ids
        return [_edge(ids[i], ids[(i + 1) % len(ids)]) for i in range(len(ids))]


@dataclass(frozen=True)
class BoundarySegment:
    """Ordered polyline of boundary nodes.

    Args:
        kind: Open (ocean) or land (coast) boundary.
        index: Zero-based position among segments of the same kind.
        node_ids: Node ids in traversal order.
        flag: Land boundary type from the hgrid file (0 land, 1 island).
    """

    kind: BoundaryKind
    index: int
    node_ids: tuple[int, ...]
    flag: int = 0

    @property
    def is_island(self) -> bool:
        return self.kind is BoundaryKind.LAND and self.flag == 1

    def edges(self) -> list[Edge]:
        """Return consecutive node pairs as sorted edges.

        Islands close implicitly: unless the first node is repeated at the
        end, the last node joins back to the first.
        """
        ids = self.node_ids
        edges = [_edge(ids[i], ids[i + 1]) for i in range(len(ids) - 1)]
        if self.is_island and len(ids) > 2 and ids[0] != ids[-1]:
            edges.append(_edge(ids[-1], ids[0]))
        return edges


class Mesh:
    """Unstructured horizontal mesh with two-phase construction.

    During the build phase ``add_node``, ``add_element`` and
    ``add_boundary_segment`` accept data without cross-checking, so records
    may reference nodes that are added later. ``finalize`` then runs a single
    pass over all invariants and either freezes the mesh or raises
    ``InvariantError`` listing every violation found.

    Args:
        name: Free-text grid description (first line of an hgrid file).
        crs: Coordinate reference system identifier (e.g., "EPSG:4326").
            Stored as metadata; coordinates are never converted here.

    Example:
        >>> mesh = Mesh("unit square", crs="EPSG:4326")
        >>> for i, (x, y) in enumerate([(0, 0), (1, 0), (1, 1), (0, 1)], 1):
        ...     mesh.add_node(i, x, y, 5.0)
        >>> mesh.add_element(1, [1, 2, 3])
        >>> mesh.add_element(2, [1, 3, 4])
        >>> mesh.finalize().element_count
        2
    """

    def __init__(self, name: str = "", crs: str | None = None):
        self._name = name
        self._crs = crs

        # Build phase accumulators, in insertion order
        self._node_ids: list[int] = []
        self._coords: list[tuple[float, float, float]] = []
        self._elements: list[Element] = []
        self._boundaries: list[BoundarySegment] = []
        self._segment_counts: Counter = Counter()

        # Populated by finalize
        self._finalized = False
        self._xyz: np.ndarray | None = None
        self._node_index: dict[int, int] = {}
        self._element_index: dict[int, int] = {}
        self._perimeter: frozenset[Edge] = frozenset()
        self._adjacency: dict[int, frozenset[int]] | None = None

    # ------------------------------------------------------------------
    # Build phase

    def _require_mutable(self) -> None:
        if self._finalized:
            raise MeshStateError("Mesh is finalized and can no longer be modified")

    def _require_finalized(self, operation: str) -> None:
        if not self._finalized:
            raise MeshStateError(f"{operation} requires a finalized mesh")

    def add_node(self, node_id: int, x: float, y: float, z: float = 0.0) -> None:
        """Append a node. Identifier checks are deferred to ``finalize``."""
        self._require_mutable()
        self._node_ids.append(int(node_id))
        self._coords.append((float(x), float(y), float(z)))

    def add_element(self, element_id: int, node_ids: Sequence[int]) -> None:
        """Append an element. Node references may point forward."""
        self._require_mutable()
        self._elements.append(
            Element(int(element_id), tuple(int(n) for n in node_ids))
        )

    def add_boundary_segment(
        self,
        kind: BoundaryKind | str,
        node_ids: Sequence[int],
        flag: int = 0,
    ) -> BoundarySegment:
        """Append a boundary segment of the given kind.

        Returns:
            The stored segment, with its index among segments of that kind.
        """
        self._require_mutable()
        kind = BoundaryKind(kind)
        segment = BoundarySegment(
            kind=kind,
            index=self._segment_counts[kind],
            node_ids=tuple(int(n) for n in node_ids),
            flag=int(flag),
        )
        self._segment_counts[kind] += 1
        self._boundaries.append(segment)
        return segment

    def copy(self) -> Mesh:
        """Return an independent mesh holding the same records, not finalized."""
        clone = Mesh(self._name, self._crs)
        clone._node_ids = list(self._node_ids)
        clone._coords = list(self._coords)
        clone._elements = list(self._elements)
        clone._boundaries = list(self._boundaries)
        clone._segment_counts = Counter(self._segment_counts)
        return clone

    # ------------------------------------------------------------------
    # Global invariant pass

    def collect_violations(self) -> list[Violation]:
        """Check every mesh invariant without changing the mesh.

        Returns:
            All violations found, empty if the mesh is consistent.
        """
        violations, _ = self._check()
        return violations

    def _check(self) -> tuple[list[Violation], frozenset[Edge]]:
        violations: list[Violation] = []

        # Nodes: unique ids forming 1..N, finite coordinates
        node_counts = Counter(self._node_ids)
        duplicated = [i for i, c in node_counts.items() if c > 1]
        if duplicated:
            violations.append(Violation(
                "duplicate-node-id",
                f"node ids used more than once: {_format_ids(duplicated)}",
            ))
        n_nodes = len(self._node_ids)
        present = set(node_counts)
        outside = [i for i in present if not 1 <= i <= n_nodes]
        if outside:
            violations.append(Violation(
                "node-id-range",
                f"node ids outside 1..{n_nodes}: {_format_ids(outside)}",
            ))
        missing = set(range(1, n_nodes + 1)) - present
        if missing:
            violations.append(Violation(
                "node-id-gap",
                f"node ids missing from 1..{n_nodes}: {_format_ids(missing)}",
            ))

        position: dict[int, int] = {}
        for pos, node_id in enumerate(self._node_ids):
            position.setdefault(node_id, pos)
        xyz = np.array(self._coords, dtype=float).reshape(-1, 3)
        bad_coords = ~np.all(np.isfinite(xyz), axis=1)
        if np.any(bad_coords):
            ids = [self._node_ids[i] for i in np.flatnonzero(bad_coords)]
            violations.append(Violation(
                "non-finite-coordinate",
                f"nodes with NaN or infinite values: {_format_ids(ids)}",
            ))

        # Elements: unique ids forming 1..M
        element_counts = Counter(e.id for e in self._elements)
        duplicated = [i for i, c in element_counts.items() if c > 1]
        if duplicated:
            violations.append(Violation(
                "duplicate-element-id",
                f"element ids used more than once: {_format_ids(duplicated)}",
            ))
        n_elements = len(self._elements)
        outside = [i for i in element_counts if not 1 <= i <= n_elements]
        if outside:
            violations.append(Violation(
                "element-id-range",
                f"element ids outside 1..{n_elements}: {_format_ids(outside)}",
            ))
        missing = set(range(1, n_elements + 1)) - set(element_counts)
        if missing:
            violations.append(Violation(
                "element-id-gap",
                f"element ids missing from 1..{n_elements}: "
                f"{_format_ids(missing)}",
            ))

        # Elements: shape, references, duplicates
        seen_cells: dict[tuple[int, ...], int] = {}
        well_formed: dict[int, list[Element]] = {3: [], 4: []}
        edge_counts: Counter = Counter()
        for element in self._elements:
            ids = element.node_ids
            if len(ids) not in (3, 4):
                violations.append(Violation(
                    "element-arity",
                    f"element {element.id} has {len(ids)} nodes, expected 3 or 4",
                ))
                continue
            dangling = [n for n in ids if n not in present]
            if dangling:
                violations.append(Violation(
                    "dangling-node-reference",
                    f"element {element.id} references unknown nodes "
                    f"{_format_ids(dangling)}",
                ))
                continue
            if len(set(ids)) != len(ids):
                violations.append(Violation(
                    "repeated-element-node",
                    f"element {element.id} repeats a node: {list(ids)}",
                ))
                continue
            key = tuple(sorted(ids))
            if key in seen_cells:
                violations.append(Violation(
                    "duplicate-element",
                    f"element {element.id} duplicates element {seen_cells[key]}",
                ))
                continue
            seen_cells[key] = element.id
            well_formed[len(ids)].append(element)
            edge_counts.update(element.edges())

        for arity, elements in well_formed.items():
            if not elements:
                continue
            connectivity = np.array(
                [[position[n] for n in e.node_ids] for e in elements], dtype=int
            )
            areas = signed_areas(xyz[:, :2], connectivity)
            for element, area in zip(elements, areas):
                if not area > 0.0:
                    violations.append(Violation(
                        "non-positive-area",
                        f"element {element.id} has signed area {area:.6g}; "
                        f"nodes must be counter-clockwise",
                    ))

        shared = [e for e, c in edge_counts.items() if c > 2]
        if shared:
            violations.append(Violation(
                "non-manifold-edge",
                f"{len(shared)} edge(s) shared by more than two elements, "
                f"e.g. {shared[0]}",
            ))
        perimeter = frozenset(e for e, c in edge_counts.items() if c == 1)

        # Boundaries: perimeter edges, each covered at most once
        covered: dict[Edge, BoundarySegment] = {}
        for segment in self._boundaries:
            label = f"{segment.kind.value} boundary {segment.index + 1}"
            if len(segment.node_ids) < 2:
                violations.append(Violation(
                    "short-boundary",
                    f"{label} has {len(segment.node_ids)} node(s), need at least 2",
                ))
                continue
            dangling = [n for n in segment.node_ids if n not in present]
            if dangling:
                violations.append(Violation(
                    "dangling-node-reference",
                    f"{label} references unknown nodes {_format_ids(dangling)}",
                ))
                continue
            for edge in segment.edges():
                if edge not in edge_counts:
                    violations.append(Violation(
                        "boundary-not-on-edge",
                        f"{label}: nodes {edge[0]} and {edge[1]} do not share "
                        f"an element edge",
                    ))
                elif edge not in perimeter:
                    violations.append(Violation(
                        "boundary-interior-edge",
                        f"{label}: edge {edge} is interior to the mesh",
                    ))
                elif edge in covered:
                    other = covered[edge]
                    violations.append(Violation(
                        "boundary-overlap",
                        f"{label}: edge {edge} already covered by "
                        f"{other.kind.value} boundary {other.index + 1}",
                    ))
                else:
                    covered[edge] = segment

        return violations, perimeter

    def finalize(self) -> Mesh:
        """Validate all invariants and freeze the mesh.

        Calling it again on a finalized mesh is a no-op.

        Returns:
            Self, now immutable.

        Raises:
            InvariantError: With every violation found in the pass.
        """
        if self._finalized:
            return self

        violations, perimeter = self._check()
        if violations:
            raise InvariantError(violations)

        self._xyz = np.array(self._coords, dtype=float).reshape(-1, 3)
        self._xyz.setflags(write=False)
        self._node_index = {n: i for i, n in enumerate(self._node_ids)}
        self._element_index = {e.id: i for i, e in enumerate(self._elements)}
        self._perimeter = perimeter
        self._finalized = True
        return self

    @property
    def is_finalized(self) -> bool:
        """Return True once ``finalize`` succeeded."""
        return self._finalized

    # ------------------------------------------------------------------
    # Read access

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._require_mutable()
        self._name = value

    @property
    def crs(self) -> str | None:
        """Return coordinate reference system identifier."""
        return self._crs

    @crs.setter
    def crs(self, value: str | None) -> None:
        self._require_mutable()
        self._crs = value

    @property
    def node_count(self) -> int:
        return len(self._node_ids)

    @property
    def element_count(self) -> int:
        return len(self._elements)

    @property
    def node_ids(self) -> np.ndarray:
        """Node ids in insertion order."""
        return np.array(self._node_ids, dtype=int)

    @property
    def xy(self) -> np.ndarray:
        """Node coordinates, shape (n_nodes, 2), in insertion order."""
        return self._coordinates()[:, :2]

    @property
    def z(self) -> np.ndarray:
        """Node depths, shape (n_nodes,), in insertion order."""
        return self._coordinates()[:, 2]

    def _coordinates(self) -> np.ndarray:
        if self._xyz is not None:
            return self._xyz
        return np.array(self._coords, dtype=float).reshape(-1, 3)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Return bounding box as (xmin, ymin, xmax, ymax)."""
        xy = self.xy
        if len(xy) == 0:
            raise MeshStateError("Mesh has no nodes")
        xmin, ymin = xy.min(axis=0)
        xmax, ymax = xy.max(axis=0)
        return (float(xmin), float(ymin), float(xmax), float(ymax))

    def nodes(self) -> Iterator[Node]:
        """Iterate nodes in insertion order."""
        for node_id, (x, y, z) in zip(self._node_ids, self._coords):
            yield Node(node_id, x, y, z)

    def elements(self) -> Iterator[Element]:
        """Iterate elements in insertion order."""
        return iter(self._elements)

    def node(self, node_id: int) -> Node:
        """Return a node by id (finalized mesh only)."""
        self._require_finalized("Node lookup")
        x, y, z = self._xyz[self._node_index[node_id]]
        return Node(node_id, float(x), float(y), float(z))

    def element(self, element_id: int) -> Element:
        """Return an element by id (finalized mesh only)."""
        self._require_finalized("Element lookup")
        return self._elements[self._element_index[element_id]]

    def node_position(self, node_id: int) -> int:
        """Return the row of ``node_id`` in ``xy`` and ``z``."""
        self._require_finalized("Node lookup")
        return self._node_index[node_id]

    def element_coords(self, element_id: int) -> np.ndarray:
        """Return the (k, 2) coordinates of an element's nodes."""
        element = self.element(element_id)
        rows = [self._node_index[n] for n in element.node_ids]
        return self._xyz[rows, :2]

    def element_area(self, element_id: int) -> float:
        """Return the signed area of an element."""
        return signed_area(self.element_coords(element_id))

    def elements_touching(self, node_id: int) -> frozenset[int]:
        """Return ids of the elements incident to a node.

        The node-to-element table is built on first use and kept for the
        lifetime of the mesh, which cannot change once finalized.

        Raises:
            MeshStateError: If the mesh is not finalized.
            KeyError: If the node does not exist.
        """
        self._require_finalized("Element adjacency")
        if node_id not in self._node_index:
            raise KeyError(node_id)
        if self._adjacency is None:
            table: dict[int, set[int]] = defaultdict(set)
            for element in self._elements:
                for n in element.node_ids:
                    table[n].add(element.id)
            self._adjacency = {n: frozenset(ids) for n, ids in table.items()}
        return self._adjacency.get(node_id, frozenset())

    def perimeter_edges(self) -> frozenset[Edge]:
        """Return the element edges used by exactly one element."""
        self._require_finalized("Perimeter lookup")
        return self._perimeter

    # ------------------------------------------------------------------
    # Boundaries

    def boundaries(self, kind: BoundaryKind | str) -> list[BoundarySegment]:
        """Return the segments of one kind in file order."""
        kind = BoundaryKind(kind)
        return [s for s in self._boundaries if s.kind is kind]

    @property
    def open_boundaries(self) -> list[BoundarySegment]:
        return self.boundaries(BoundaryKind.OPEN)

    @property
    def land_boundaries(self) -> list[BoundarySegment]:
        return self.boundaries(BoundaryKind.LAND)

    def boundary_segments(self) -> dict[BoundaryKind, list[BoundarySegment]]:
        """Return all segments grouped by kind."""
        return {kind: self.boundaries(kind) for kind in BoundaryKind}

    def boundary_coords(self, segment: BoundarySegment) -> np.ndarray:
        """Return the (n, 2) coordinates along a boundary segment."""
        self._require_finalized("Boundary traversal")
        rows = [self._node_index[n] for n in segment.node_ids]
        return self._xyz[rows, :2]

    # ------------------------------------------------------------------
    # Derived meshes

    def with_coordinates(self, xy: np.ndarray, crs: str | None = None) -> Mesh:
        """Return a finalized copy with new planar coordinates.

        Elements, boundaries and depths are shared unchanged. Orientation is
        not re-checked: a transform into a mirrored coordinate system can
        flip winding, which ``validate`` reports as ``BadWinding``.

        Args:
            xy: New coordinates, shape (n_nodes, 2), in insertion order.
            crs: CRS of the new coordinates. Defaults to the current CRS.
        """
        self._require_finalized("Coordinate replacement")
        xy = np.asarray(xy, dtype=float)
        if xy.shape != (self.node_count, 2):
            raise ValueError(
                f"xy must have shape ({self.node_count}, 2), got {xy.shape}"
            )

        clone = Mesh(self._name, crs if crs is not None else self._crs)
        xyz = np.column_stack([xy, self._xyz[:, 2]])
        xyz.setflags(write=False)
        clone._node_ids = self._node_ids
        clone._coords = [tuple(row) for row in xyz.tolist()]
        clone._elements = self._elements
        clone._boundaries = self._boundaries
        clone._segment_counts = Counter(self._segment_counts)
        clone._xyz = xyz
        clone._node_index = self._node_index
        clone._element_index = self._element_index
        clone._perimeter = self._perimeter
        clone._adjacency = self._adjacency
        clone._finalized = True
        return clone

    def get_mesh_info(self) -> dict:
        """Return summary statistics of the mesh."""
        info = {
            "name": self._name,
            "crs": self._crs,
            "n_nodes": self.node_count,
            "n_elements": self.element_count,
            "n_triangles": sum(1 for e in self._elements if e.n_nodes == 3),
            "n_quads": sum(1 for e in self._elements if e.n_nodes == 4),
            "n_open_boundaries": len(self.open_boundaries),
            "n_land_boundaries": len(self.land_boundaries),
            "finalized": self._finalized,
        }
        if self.node_count:
            info["bounds"] = self.bounds
        return info

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mesh):
            return NotImplemented
        return (
            self._name == other._name
            and self._crs == other._crs
            and self._node_ids == other._node_ids
            and np.array_equal(self._coordinates(), other._coordinates())
            and self._elements == other._elements
            and self._boundaries == other._boundaries
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"Mesh(name={self._name!r}, n_nodes={self.node_count}, "
            f"n_elements={self.element_count}, crs={self._crs!r}, "
            f"finalized={self._finalized})"
        )
