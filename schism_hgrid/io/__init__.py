"""I/O utilities for hgrid files and coordinate-system resources."""

from schism_hgrid.io.hgrid import load_text, parse, read_hgrid, write, write_hgrid
from schism_hgrid.io.fetch import (
    GridCache,
    HttpResourceFetcher,
    ResourceFetcher,
    fetch_all,
    get_grid_cache,
)

__all__ = [
    "parse",
    "write",
    "load_text",
    "read_hgrid",
    "write_hgrid",
    "ResourceFetcher",
    "HttpResourceFetcher",
    "GridCache",
    "fetch_all",
    "get_grid_cache",
]
