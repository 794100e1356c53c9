"""
Shared fixtures for schism_hgrid tests.

Provides small hgrid texts and meshes, a capturing mock logger and fake
resource fetchers so that no test touches the network.
"""

import logging
from unittest.mock import MagicMock

import pytest

from schism_hgrid.exceptions import FetchError
from schism_hgrid.io.hgrid import parse
from schism_hgrid.mesh.model import Mesh


UNIT_SQUARE_TEXT = """\
unit square
2 4
1 0.00000000 0.00000000 5.00000000
2 1.00000000 0.00000000 5.00000000
3 1.00000000 1.00000000 5.00000000
4 0.00000000 1.00000000 5.00000000
1 3 1 2 3
2 3 1 3 4
1 = Number of open boundaries
2 = Total number of open boundary nodes
2 = Number of nodes for open boundary 1
1
2
1 = Number of land boundaries
2 = Total number of land boundary nodes
2 0 = Number of nodes for land boundary 1
3
4
"""


# =============================================================================
# Mesh Fixtures
# =============================================================================

@pytest.fixture
def unit_square_text():
    """Hgrid text of a unit square split into two triangles."""
    return UNIT_SQUARE_TEXT


@pytest.fixture
def unit_square(unit_square_text):
    """Finalized unit square mesh in geographic coordinates."""
    return parse(unit_square_text, crs="EPSG:4326")


@pytest.fixture
def open_square():
    """Unit square assembled node by node, not yet finalized."""
    mesh = Mesh("open square", crs="EPSG:4326")
    for node_id, (x, y) in enumerate([(0, 0), (1, 0), (1, 1), (0, 1)], start=1):
        mesh.add_node(node_id, x, y, 5.0)
    mesh.add_element(1, [1, 2, 3])
    mesh.add_element(2, [1, 3, 4])
    return mesh


@pytest.fixture
def annulus():
    """Square ring around a square island, every perimeter edge bounded.

    The island is listed the way hgrid files do it: flag 1, first node not
    repeated at the end.
    """
    mesh = Mesh("annulus", crs="EPSG:4326")
    corners = [(0, 0), (3, 0), (3, 3), (0, 3), (1, 1), (2, 1), (2, 2), (1, 2)]
    for node_id, (x, y) in enumerate(corners, start=1):
        mesh.add_node(node_id, x, y, 2.0)
    triangles = [
        [1, 2, 6], [1, 6, 5], [2, 3, 7], [2, 7, 6],
        [3, 4, 8], [3, 8, 7], [4, 1, 5], [4, 5, 8],
    ]
    for element_id, nodes in enumerate(triangles, start=1):
        mesh.add_element(element_id, nodes)
    mesh.add_boundary_segment("open", [1, 2, 3])
    mesh.add_boundary_segment("land", [3, 4, 1])
    mesh.add_boundary_segment("land", [5, 8, 7, 6], flag=1)
    return mesh.finalize()


# =============================================================================
# Mock Logger Fixture
# =============================================================================

@pytest.fixture
def mock_logger():
    """
    Provide a mock logger that captures log messages.

    Messages are stored per level in ``logger.messages`` for assertion.
    """
    logger = MagicMock(spec=logging.Logger)
    logger.messages = {"info": [], "warning": [], "error": [], "debug": []}

    def capture(level):
        def _capture(msg, *args, **kwargs):
            logger.messages[level].append(msg % args if args else msg)
        return _capture

    for level in logger.messages:
        getattr(logger, level).side_effect = capture(level)

    return logger


# =============================================================================
# Fake Fetchers
# =============================================================================

class FakeFetcher:
    """In-memory resource fetcher recording every request."""

    def __init__(self, resources=None):
        self.resources = dict(resources or {})
        self.requested = []

    async def fetch(self, identifier):
        self.requested.append(identifier)
        if identifier not in self.resources:
            raise FetchError(identifier, "not available", attempts=1)
        return self.resources[identifier]


@pytest.fixture
def fake_fetcher():
    """Factory for fake fetchers serving the given resources."""
    return FakeFetcher
