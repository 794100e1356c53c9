"""schism_hgrid - SCHISM horizontal grid toolkit.

Reads and writes hgrid.gr3 meshes, checks their invariants, reprojects node
coordinates between coordinate reference systems and reports advisory
topology issues.

Example:
    >>> from schism_hgrid import HgridBuilder
    >>> builder = (
    ...     HgridBuilder()
    ...     .load_hgrid("hgrid.gr3")
    ...     .set_source_crs("EPSG:4326")
    ...     .set_target_crs("EPSG:32631")
    ...     .set_strict(True)
    ... )
    >>> mesh = builder.build()
    >>> builder.save("hgrid_utm.gr3")
"""

import logging

from schism_hgrid.exceptions import (
    BuildError,
    DataLoadError,
    FetchError,
    HgridError,
    InvariantError,
    MeshStateError,
    ParseError,
    TransformError,
    TransformErrorCategory,
    Violation,
)
from schism_hgrid.mesh import BoundaryKind, BuildConfig, HgridBuilder, Mesh, validate
from schism_hgrid.mesh.reproject import reproject
from schism_hgrid.io import parse, read_hgrid, write, write_hgrid

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Main API
    "HgridBuilder",
    "BuildConfig",
    "Mesh",
    "BoundaryKind",
    # Operations
    "parse",
    "write",
    "read_hgrid",
    "write_hgrid",
    "reproject",
    "validate",
    # Exceptions
    "HgridError",
    "DataLoadError",
    "MeshStateError",
    "ParseError",
    "Violation",
    "InvariantError",
    "TransformError",
    "TransformErrorCategory",
    "FetchError",
    "BuildError",
]
