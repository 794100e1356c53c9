"""Coordinate reprojection of mesh nodes."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError
from pyproj.transformer import AreaOfInterest, TransformerGroup

from schism_hgrid.exceptions import (
    FetchError,
    HgridError,
    MeshStateError,
    TransformError,
    TransformErrorCategory,
)
from schism_hgrid.io.fetch import GridCache, ResourceFetcher, get_grid_cache
from schism_hgrid.mesh.model import Mesh

DEFAULT_CHUNK_SIZE = 10_000


class _Cancelled(Exception):
    """Raised by workers that start after another chunk failed."""


def resolve_crs(identifier: str | CRS) -> CRS:
    """Resolve a CRS identifier (EPSG code, PROJ string, WKT).

    Raises:
        TransformError: With category ``projection-definition`` if the
            identifier is not understood.
    """
    try:
        return CRS.from_user_input(identifier)
    except CRSError as e:
        raise TransformError(
            TransformErrorCategory.PROJECTION_DEFINITION,
            f"unknown coordinate reference system {identifier!r}: {e}",
        ) from e


def area_of_interest(mesh: Mesh, source: CRS) -> AreaOfInterest | None:
    """Return the longitude/latitude extent of the mesh nodes.

    PROJ ranks candidate operations by accuracy over this area, so grids and
    transformers are chosen for where the mesh actually lies. Projected
    bounds are converted through the geodetic CRS of ``source``.

    Returns:
        The extent, or None for an empty mesh or when it cannot be expressed
        in longitude and latitude.
    """
    if mesh.node_count == 0:
        return None
    west, south, east, north = mesh.bounds
    if not source.is_geographic:
        geodetic = source.geodetic_crs
        if geodetic is None:
            return None
        try:
            west, south, east, north = Transformer.from_crs(
                source, geodetic, always_xy=True
            ).transform_bounds(west, south, east, north)
        except ProjError:
            return None

    west, east = max(west, -180.0), min(east, 180.0)
    south, north = max(south, -90.0), min(north, 90.0)
    if not np.all(np.isfinite([west, south, east, north])):
        return None
    if west > east or south > north:
        return None
    return AreaOfInterest(west, south, east, north)


def missing_grids(
    source: CRS,
    target: CRS,
    area_of_interest: AreaOfInterest | None = None,
) -> dict[str, str]:
    """Return grid files needed by the best transformation but not installed.

    Args:
        source: Source CRS.
        target: Target CRS.
        area_of_interest: Extent the transformation is used for. Without
            it the best operation is the one for the whole CRS extent.

    Returns:
        Mapping of grid file name to fetch identifier (its URL when PROJ
        knows one, otherwise the bare name).
    """
    try:
        group = TransformerGroup(
            source, target, always_xy=True, area_of_interest=area_of_interest
        )
    except ProjError as e:
        raise TransformError(
            TransformErrorCategory.PROJECTION_DEFINITION,
            f"no transformation from {source.name!r} to {target.name!r}: {e}",
        ) from e

    if group.best_available or not group.unavailable_operations:
        return {}
    best = group.unavailable_operations[0]
    return {
        grid.short_name: grid.url or grid.short_name
        for grid in best.grids
        if not grid.available
    }


async def prepare_transformation(
    source: CRS,
    target: CRS,
    fetcher: ResourceFetcher | None = None,
    cache: GridCache | None = None,
    logger: logging.Logger | None = None,
    area_of_interest: AreaOfInterest | None = None,
) -> None:
    """Fetch any grid-shift files the transformation is missing.

    Without a fetcher, missing grids are only reported and PROJ falls back to
    the most accurate operation that is installed.

    Raises:
        TransformError: With category ``network`` if fetching fails.
    """
    log = logger or logging.getLogger(__name__)
    grids = missing_grids(source, target, area_of_interest)
    if not grids:
        return
    if fetcher is None:
        _report_unfetched(grids, log)
        return
    await _fetch_grids(grids, fetcher, cache)


def _report_unfetched(grids: dict[str, str], log: logging.Logger) -> None:
    log.warning(
        f"Grid-shift file(s) {sorted(grids)} not installed and no fetcher "
        f"given; using the best available transformation"
    )


async def _fetch_grids(
    grids: dict[str, str],
    fetcher: ResourceFetcher,
    cache: GridCache | None,
) -> None:
    cache = cache or get_grid_cache()
    try:
        await cache.ensure(grids, fetcher)
    except FetchError as e:
        raise TransformError(TransformErrorCategory.NETWORK, str(e)) from e


def _transform_chunk(
    source: CRS,
    target: CRS,
    xy: np.ndarray,
    out: np.ndarray,
    rows: slice,
    node_ids: np.ndarray,
    cancel: threading.Event,
    state: threading.local,
    aoi: AreaOfInterest | None,
) -> None:
    if cancel.is_set():
        raise _Cancelled()

    # pyproj transformers are not shared between threads
    transformer = getattr(state, "transformer", None)
    if transformer is None:
        transformer = Transformer.from_crs(
            source, target, always_xy=True, area_of_interest=aoi
        )
        state.transformer = transformer

    try:
        x, y = transformer.transform(xy[rows, 0], xy[rows, 1], errcheck=True)
    except ProjError as e:
        cancel.set()
        raise TransformError(
            TransformErrorCategory.NUMERIC,
            f"transform failed for nodes {node_ids[rows][0]}..{node_ids[rows][-1]}: {e}",
        ) from e

    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    bad = ~(np.isfinite(x) & np.isfinite(y))
    if np.any(bad):
        cancel.set()
        first = int(node_ids[rows][np.flatnonzero(bad)[0]])
        raise TransformError(
            TransformErrorCategory.NUMERIC,
            f"{int(bad.sum())} node(s) have no finite image, first is node {first}",
        )
    out[rows, 0] = x
    out[rows, 1] = y


def transform_coordinates(
    xy: np.ndarray,
    source: CRS,
    target: CRS,
    node_ids: np.ndarray | None = None,
    max_workers: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    area_of_interest: AreaOfInterest | None = None,
) -> np.ndarray:
    """Transform an (n, 2) coordinate array chunk by chunk on a thread pool.

    Each chunk writes only its own rows of the output. The first failing
    chunk sets a shared cancellation flag so that chunks not yet started are
    skipped, and its error is raised once the pool has drained.

    Returns:
        New (n, 2) array; the input is never modified.

    Raises:
        TransformError: With category ``numeric`` if any point fails.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    xy = np.asarray(xy, dtype=float)
    n = len(xy)
    if node_ids is None:
        node_ids = np.arange(1, n + 1)

    try:
        # Fail early, on the calling thread, for unusable definitions
        Transformer.from_crs(
            source, target, always_xy=True, area_of_interest=area_of_interest
        )
    except (CRSError, ProjError) as e:
        raise TransformError(
            TransformErrorCategory.PROJECTION_DEFINITION,
            f"cannot build transformation {source.name!r} -> {target.name!r}: {e}",
        ) from e

    out = np.empty_like(xy)
    if n == 0:
        return out

    chunks = [slice(i, min(i + chunk_size, n)) for i in range(0, n, chunk_size)]
    cancel = threading.Event()
    state = threading.local()

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(
                _transform_chunk, source, target, xy, out, rows, node_ids,
                cancel, state, area_of_interest,
            )
            for rows in chunks
        ]
        failure: BaseException | None = None
        for future in as_completed(futures):
            if future.cancelled():
                continue
            error = future.exception()
            if error is None or isinstance(error, _Cancelled) or failure is not None:
                continue
            failure = error
            cancel.set()
            for pending in futures:
                pending.cancel()

    if failure is not None:
        raise failure
    return out


def reproject(
    mesh: Mesh,
    target_crs: str | CRS,
    source_crs: str | CRS | None = None,
    fetcher: ResourceFetcher | None = None,
    max_workers: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cache: GridCache | None = None,
    logger: logging.Logger | None = None,
) -> Mesh:
    """Reproject node coordinates into another coordinate reference system.

    Only node (x, y) pairs change: elements, boundaries and depths are
    shared with the input, which is left untouched. The operation is
    all-or-nothing; on failure no new mesh exists.

    Args:
        mesh: Finalized mesh.
        target_crs: Target CRS identifier.
        source_crs: CRS of the input coordinates. Defaults to ``mesh.crs``.
        fetcher: Capability used to download missing grid-shift files.
        max_workers: Thread pool size for the per-node transform.
        chunk_size: Nodes per worker task.
        cache: Grid cache. Defaults to the process-wide cache.
        logger: Diagnostics sink.

    Returns:
        New finalized mesh whose ``crs`` is ``target_crs``.

    Raises:
        MeshStateError: If the mesh is not finalized.
        TransformError: Categorised as ``network``, ``projection-definition``
            or ``numeric``.
        HgridError: If grids must be fetched while an event loop is already
            running in this thread; use ``reproject_async`` there.

    Example:
        >>> utm = reproject(mesh, "EPSG:32631")
        >>> back = reproject(utm, "EPSG:4326")
    """
    log = logger or logging.getLogger(__name__)
    source, target = _resolve_pair(mesh, target_crs, source_crs)

    aoi = area_of_interest(mesh, source)
    grids = missing_grids(source, target, aoi)
    if grids and fetcher is None:
        _report_unfetched(grids, log)
    elif grids:
        _run_fetch(grids, fetcher, cache)

    xy = transform_coordinates(
        mesh.xy, source, target, mesh.node_ids, max_workers, chunk_size, aoi
    )
    log.info(
        f"Reprojected {mesh.node_count} nodes from {source.name!r} to {target.name!r}"
    )
    return mesh.with_coordinates(xy, crs=_identifier(target_crs))


async def reproject_async(
    mesh: Mesh,
    target_crs: str | CRS,
    source_crs: str | CRS | None = None,
    fetcher: ResourceFetcher | None = None,
    max_workers: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cache: GridCache | None = None,
    logger: logging.Logger | None = None,
) -> Mesh:
    """Awaitable variant of ``reproject`` for callers already in an event loop."""
    log = logger or logging.getLogger(__name__)
    source, target = _resolve_pair(mesh, target_crs, source_crs)
    aoi = area_of_interest(mesh, source)
    await prepare_transformation(source, target, fetcher, cache, log, aoi)
    xy = await asyncio.to_thread(
        transform_coordinates,
        mesh.xy, source, target, mesh.node_ids, max_workers, chunk_size, aoi,
    )
    return mesh.with_coordinates(xy, crs=_identifier(target_crs))


def _run_fetch(
    grids: dict[str, str],
    fetcher: ResourceFetcher,
    cache: GridCache | None,
) -> None:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(_fetch_grids(grids, fetcher, cache))
        return
    raise HgridError(
        f"Grid-shift file(s) {sorted(grids)} must be fetched but an event loop "
        f"is already running; await reproject_async() instead"
    )


def _resolve_pair(
    mesh: Mesh,
    target_crs: str | CRS,
    source_crs: str | CRS | None,
) -> tuple[CRS, CRS]:
    if not mesh.is_finalized:
        raise MeshStateError("Reprojection requires a finalized mesh")
    source_id = source_crs if source_crs is not None else mesh.crs
    if source_id is None:
        raise TransformError(
            TransformErrorCategory.PROJECTION_DEFINITION,
            "mesh has no coordinate reference system and no source_crs was given",
        )
    return resolve_crs(source_id), resolve_crs(target_crs)


def _identifier(crs: str | CRS) -> str:
    if isinstance(crs, CRS):
        return crs.to_string()
    return crs
