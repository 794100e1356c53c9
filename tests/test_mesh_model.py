"""
Tests for the two-phase mesh model.

Covers:
- Build phase and finalize, including aggregated invariant violations
- Immutability after finalize
- Lookups, adjacency and boundary traversal
- Derived meshes and structural equality
"""

import numpy as np
import pytest

from schism_hgrid.exceptions import InvariantError, MeshStateError
from schism_hgrid.mesh.model import (
    BoundaryKind,
    BoundarySegment,
    Element,
    Mesh,
    Node,
)


def _codes(mesh):
    return [v.code for v in mesh.collect_violations()]


class TestFinalize:
    """Tests for the global invariant pass."""

    def test_valid_mesh(self, open_square):
        """Test a consistent mesh finalizes and returns itself."""
        assert not open_square.is_finalized
        assert open_square.collect_violations() == []

        assert open_square.finalize() is open_square
        assert open_square.is_finalized

    def test_finalize_is_idempotent(self, open_square):
        """Test finalizing twice is a no-op."""
        open_square.finalize()

        assert open_square.finalize() is open_square

    def test_forward_references(self):
        """Test elements may reference nodes added later."""
        mesh = Mesh()
        mesh.add_element(1, [1, 2, 3])
        mesh.add_node(1, 0.0, 0.0)
        mesh.add_node(2, 1.0, 0.0)
        mesh.add_node(3, 0.0, 1.0)

        assert mesh.finalize().element_count == 1

    def test_all_violations_reported(self):
        """Test one pass reports every broken invariant."""
        mesh = Mesh()
        mesh.add_node(1, 0.0, 0.0)
        mesh.add_node(1, 1.0, 0.0)
        mesh.add_node(3, 0.0, 1.0)
        mesh.add_element(1, [1, 3, 7])

        with pytest.raises(InvariantError) as exc_info:
            mesh.finalize()

        codes = [v.code for v in exc_info.value.violations]
        assert codes == [
            "duplicate-node-id",
            "node-id-gap",
            "dangling-node-reference",
        ]
        assert not mesh.is_finalized

    def test_node_id_range(self):
        """Test node ids must form 1..N."""
        mesh = Mesh()
        mesh.add_node(1, 0.0, 0.0)
        mesh.add_node(5, 1.0, 0.0)

        assert _codes(mesh) == ["node-id-range", "node-id-gap"]

    def test_non_finite_coordinate(self):
        """Test NaN coordinates are rejected."""
        mesh = Mesh()
        mesh.add_node(1, float("nan"), 0.0)

        assert _codes(mesh) == ["non-finite-coordinate"]

    def test_element_ids_contiguous(self, open_square):
        """Test element ids must form 1..M."""
        open_square.add_element(4, [2, 3, 4])

        codes = _codes(open_square)
        assert "element-id-range" in codes
        assert "element-id-gap" in codes

    def test_element_arity(self):
        """Test elements need three or four nodes."""
        mesh = Mesh()
        mesh.add_node(1, 0.0, 0.0)
        mesh.add_node(2, 1.0, 0.0)
        mesh.add_element(1, [1, 2])

        assert _codes(mesh) == ["element-arity"]

    def test_repeated_node_in_element(self, open_square):
        """Test an element may not list a node twice."""
        open_square.add_element(3, [1, 2, 2])

        assert _codes(open_square) == ["repeated-element-node"]

    def test_duplicate_element_in_other_order(self, open_square):
        """Test the same node set in another rotation is a duplicate."""
        open_square.add_element(3, [2, 3, 1])

        assert "duplicate-element" in _codes(open_square)

    def test_clockwise_element(self):
        """Test a clockwise element has non-positive area."""
        mesh = Mesh()
        mesh.add_node(1, 0.0, 0.0)
        mesh.add_node(2, 1.0, 0.0)
        mesh.add_node(3, 0.0, 1.0)
        mesh.add_element(1, [1, 3, 2])

        assert _codes(mesh) == ["non-positive-area"]

    def test_quad_element(self):
        """Test a counter-clockwise quad is accepted."""
        mesh = Mesh()
        for node_id, (x, y) in enumerate([(0, 0), (1, 0), (1, 1), (0, 1)], 1):
            mesh.add_node(node_id, x, y)
        mesh.add_element(1, [1, 2, 3, 4])
        mesh.add_boundary_segment("land", [1, 2, 3, 4, 1])

        mesh.finalize()

        assert mesh.element(1).is_quad
        assert mesh.element_area(1) == pytest.approx(1.0)

    def test_short_boundary(self, open_square):
        """Test a boundary needs two nodes."""
        open_square.add_boundary_segment(BoundaryKind.OPEN, [1])

        assert _codes(open_square) == ["short-boundary"]

    def test_boundary_not_on_edge(self, open_square):
        """Test consecutive boundary nodes must share an element edge."""
        open_square.add_boundary_segment(BoundaryKind.LAND, [2, 4])

        assert _codes(open_square) == ["boundary-not-on-edge"]

    def test_boundary_overlap(self, open_square):
        """Test a perimeter edge may be covered by one segment only."""
        open_square.add_boundary_segment(BoundaryKind.OPEN, [1, 2, 3])
        open_square.add_boundary_segment(BoundaryKind.LAND, [3, 2])

        assert _codes(open_square) == ["boundary-overlap"]

    def test_non_manifold_edge(self):
        """Test an edge shared by three elements is rejected."""
        mesh = Mesh()
        for node_id, (x, y) in enumerate(
            [(0, 0), (1, 0), (0.5, 1), (0.5, 2), (0.5, -1)], 1
        ):
            mesh.add_node(node_id, x, y)
        mesh.add_element(1, [1, 2, 3])
        mesh.add_element(2, [1, 2, 4])
        mesh.add_element(3, [2, 1, 5])

        assert "non-manifold-edge" in _codes(mesh)


class TestIslands:
    """Tests for implicitly closed island segments."""

    def test_island_closes_to_first_node(self, annulus):
        """Test the last island node joins back to the first."""
        island = annulus.land_boundaries[1]

        assert island.is_island
        assert island.edges() == [(5, 8), (7, 8), (6, 7), (5, 6)]

    def test_explicitly_closed_island(self):
        """Test a repeated first node adds no extra edge."""
        island = BoundarySegment(BoundaryKind.LAND, 0, (5, 8, 7, 6, 5), flag=1)

        assert island.edges() == [(5, 8), (7, 8), (6, 7), (5, 6)]

    def test_plain_land_stays_open(self):
        """Test a flag-0 land segment is not closed."""
        land = BoundarySegment(BoundaryKind.LAND, 0, (3, 4, 1))

        assert land.edges() == [(3, 4), (1, 4)]

    def test_closing_edge_is_checked(self, open_square):
        """Test the closing edge of an island counts as covered."""
        open_square.add_boundary_segment("land", [1, 2, 3, 4], flag=1)
        open_square.add_boundary_segment("open", [4, 1])

        assert _codes(open_square) == ["boundary-overlap"]


class TestImmutability:
    """Tests for the finalized phase."""

    def test_add_after_finalize(self, unit_square):
        """Test build-phase calls fail once finalized."""
        with pytest.raises(MeshStateError):
            unit_square.add_node(5, 2.0, 2.0)
        with pytest.raises(MeshStateError):
            unit_square.add_element(3, [1, 2, 4])
        with pytest.raises(MeshStateError):
            unit_square.add_boundary_segment("open", [2, 3])

    def test_metadata_after_finalize(self, unit_square):
        """Test name and CRS are frozen as well."""
        with pytest.raises(MeshStateError):
            unit_square.name = "renamed"
        with pytest.raises(MeshStateError):
            unit_square.crs = "EPSG:3857"

    def test_coordinate_arrays_are_read_only(self, unit_square):
        """Test exposed coordinates cannot be modified in place."""
        with pytest.raises(ValueError):
            unit_square.xy[0, 0] = 10.0

    def test_lookups_need_finalize(self, open_square):
        """Test finalized-only operations on an unfinalized mesh."""
        with pytest.raises(MeshStateError):
            open_square.elements_touching(1)
        with pytest.raises(MeshStateError):
            open_square.node(1)


class TestAccess:
    """Tests for lookups and traversal."""

    def test_node_and_element(self, unit_square):
        """Test lookup by id."""
        assert unit_square.node(3) == Node(3, 1.0, 1.0, 5.0)
        assert unit_square.element(2) == Element(2, (1, 3, 4))

    def test_iteration_order(self, unit_square):
        """Test nodes and elements iterate in insertion order."""
        assert [n.id for n in unit_square.nodes()] == [1, 2, 3, 4]
        assert [e.id for e in unit_square.elements()] == [1, 2]

    def test_arrays(self, unit_square):
        """Test coordinate arrays follow insertion order."""
        np.testing.assert_array_equal(unit_square.node_ids, [1, 2, 3, 4])
        np.testing.assert_array_equal(
            unit_square.xy, [[0, 0], [1, 0], [1, 1], [0, 1]]
        )
        np.testing.assert_array_equal(unit_square.z, [5, 5, 5, 5])

    def test_bounds(self, unit_square):
        """Test bounding box."""
        assert unit_square.bounds == (0.0, 0.0, 1.0, 1.0)

    def test_elements_touching(self, unit_square):
        """Test node-to-element adjacency."""
        assert unit_square.elements_touching(1) == frozenset({1, 2})
        assert unit_square.elements_touching(2) == frozenset({1})
        assert unit_square.elements_touching(4) == frozenset({2})

    def test_elements_touching_is_cached(self, unit_square):
        """Test adjacency is built once and reused."""
        first = unit_square.elements_touching(3)

        assert unit_square.elements_touching(3) is first

    def test_elements_touching_unknown_node(self, unit_square):
        """Test an unknown node id raises KeyError."""
        with pytest.raises(KeyError):
            unit_square.elements_touching(99)

    def test_isolated_node(self):
        """Test a node used by no element touches nothing."""
        mesh = Mesh()
        mesh.add_node(1, 0.0, 0.0)
        mesh.finalize()

        assert mesh.elements_touching(1) == frozenset()

    def test_boundary_traversal(self, unit_square):
        """Test boundaries grouped by kind in file order."""
        groups = unit_square.boundary_segments()

        assert set(groups) == {BoundaryKind.OPEN, BoundaryKind.LAND}
        assert groups[BoundaryKind.OPEN] == unit_square.open_boundaries
        assert unit_square.boundaries("land") == unit_square.land_boundaries
        assert unit_square.open_boundaries[0].index == 0

    def test_perimeter_edges(self, unit_square):
        """Test perimeter edges exclude the shared diagonal."""
        assert unit_square.perimeter_edges() == frozenset(
            {(1, 2), (2, 3), (3, 4), (1, 4)}
        )

    def test_get_mesh_info(self, unit_square):
        """Test summary statistics."""
        info = unit_square.get_mesh_info()

        assert info["n_nodes"] == 4
        assert info["n_elements"] == 2
        assert info["n_triangles"] == 2
        assert info["n_quads"] == 0
        assert info["n_open_boundaries"] == 1
        assert info["n_land_boundaries"] == 1
        assert info["crs"] == "EPSG:4326"


class TestDerivedMeshes:
    """Tests for with_coordinates and equality."""

    def test_with_coordinates(self, unit_square):
        """Test a copy with new coordinates shares the structure."""
        moved = unit_square.with_coordinates(unit_square.xy + 10.0, crs="local")

        assert moved.is_finalized
        assert moved.crs == "local"
        assert moved.node(1) == Node(1, 10.0, 10.0, 5.0)
        assert list(moved.elements()) == list(unit_square.elements())
        assert moved.boundary_segments() == unit_square.boundary_segments()
        assert unit_square.node(1) == Node(1, 0.0, 0.0, 5.0)

    def test_with_coordinates_shape(self, unit_square):
        """Test the coordinate array must match the node count."""
        with pytest.raises(ValueError):
            unit_square.with_coordinates(np.zeros((3, 2)))

    def test_equality(self, unit_square, open_square):
        """Test structurally identical meshes compare equal."""
        open_square.name = "unit square"
        open_square.add_boundary_segment("open", [1, 2])
        open_square.add_boundary_segment("land", [3, 4])
        open_square.finalize()

        assert open_square == unit_square
        assert unit_square.with_coordinates(unit_square.xy + 1.0) != unit_square

    def test_copy_is_independent(self, open_square):
        """Test a copy can be finalized without touching the original."""
        copied = open_square.copy()
        copied.crs = "local"
        copied.finalize()

        assert not open_square.is_finalized
        assert open_square.crs == "EPSG:4326"
        open_square.add_node(5, 2.0, 2.0)
        assert copied.node_count == 4
