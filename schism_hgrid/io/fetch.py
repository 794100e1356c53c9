"""Fetching of coordinate-system resources (grid-shift files).

The reprojection code only depends on the ``ResourceFetcher`` protocol, an
async callable mapping an identifier to raw bytes. ``HttpResourceFetcher`` is
the default implementation; tests substitute their own.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Protocol

import httpx
import pyproj.datadir

from schism_hgrid.exceptions import FetchError

PROJ_CDN_URL = "https://cdn.proj.org"

# Server-side and throttling responses worth another attempt
RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


class ResourceFetcher(Protocol):
    """Protocol for coordinate-system resource fetchers."""

    async def fetch(self, identifier: str) -> bytes:
        """Return the resource content or raise ``FetchError``."""
        ...


class HttpResourceFetcher:
    """Fetch resources over HTTP with bounded exponential-backoff retries.

    Identifiers that are absolute URLs are requested as-is; anything else is
    resolved relative to ``base_url`` (the PROJ CDN by default).

    Args:
        base_url: Base URL for bare identifiers.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt for transient failures.
        backoff_factor: Delay before retry ``n`` is
            ``backoff_factor * 2 ** (n - 1)`` seconds.
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
        logger: Diagnostics sink.
    """

    def __init__(
        self,
        base_url: str = PROJ_CDN_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if backoff_factor < 0:
            raise ValueError("backoff_factor must be non-negative")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)

    def url_for(self, identifier: str) -> str:
        """Return the URL requested for an identifier."""
        if identifier.startswith(("http://", "https://")):
            return identifier
        return f"{self.base_url}/{identifier.lstrip('/')}"

    async def fetch(self, identifier: str) -> bytes:
        """Download a resource.

        Raises:
            FetchError: On a non-retryable HTTP status or once retries are
                exhausted.
        """
        url = self.url_for(identifier)
        attempts = self.max_retries + 1
        last_error: Exception | None = None

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            for attempt in range(1, attempts + 1):
                try:
                    self._logger.info(f"Fetching {url} (attempt {attempt}/{attempts})")
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.content
                except httpx.HTTPStatusError as e:
                    if e.response.status_code not in RETRYABLE_STATUS:
                        raise FetchError(identifier, str(e), attempt) from e
                    last_error = e
                except httpx.TransportError as e:
                    last_error = e

                if attempt < attempts:
                    delay = self.backoff_factor * 2 ** (attempt - 1)
                    self._logger.warning(
                        f"Fetching {url} failed ({last_error}); "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        raise FetchError(identifier, str(last_error), attempts)


async def fetch_all(
    fetcher: ResourceFetcher,
    identifiers: Iterable[str],
) -> list[bytes]:
    """Fetch several resources concurrently.

    The first failure cancels the fetches still in flight and is re-raised.
    """
    tasks = [asyncio.ensure_future(fetcher.fetch(i)) for i in identifiers]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        # Collect the cancelled siblings so none is left unretrieved
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class GridCache:
    """Temporary directory of fetched grid-shift files for this process.

    The directory is created on first use, registered as a PROJ data
    directory so that newly built transformers can find the grids, and
    removed when the cache is garbage collected or the interpreter exits.

    Args:
        directory: Use this directory instead of a temporary one.
        logger: Diagnostics sink.
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        logger: logging.Logger | None = None,
    ):
        self._tmp: tempfile.TemporaryDirectory | None = None
        self._directory = Path(directory) if directory is not None else None
        self._files: dict[str, Path] = {}
        self._registered = False
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def directory(self) -> Path:
        """Return the cache directory, creating it if needed."""
        if self._directory is None:
            self._tmp = tempfile.TemporaryDirectory(prefix="schism_hgrid_grids_")
            self._directory = Path(self._tmp.name)
        return self._directory

    def __contains__(self, name: str) -> bool:
        return name in self._files

    def path_for(self, name: str) -> Path | None:
        """Return the cached file for a grid name, or None."""
        return self._files.get(name)

    async def ensure(
        self,
        grids: dict[str, str],
        fetcher: ResourceFetcher,
    ) -> list[Path]:
        """Make sure every grid is present locally.

        Args:
            grids: Mapping of grid file name to fetch identifier (URL or
                CDN-relative name).
            fetcher: Fetch capability used for grids not yet cached.

        Returns:
            Local paths of all requested grids.

        Raises:
            FetchError: If any grid cannot be fetched. Nothing is cached
                for the failing grid.
        """
        missing = {name: ident for name, ident in grids.items() if name not in self}
        if missing:
            self._logger.info(f"Fetching {len(missing)} grid-shift file(s)")
            contents = await fetch_all(fetcher, missing.values())
            with self._lock:
                for name, content in zip(missing, contents):
                    path = self.directory / name
                    path.write_bytes(content)
                    self._files[name] = path
            self._register()
        return [self._files[name] for name in grids]

    def _register(self) -> None:
        with self._lock:
            if not self._registered:
                pyproj.datadir.append_data_dir(str(self.directory))
                self._registered = True


_default_cache: GridCache | None = None
_default_cache_lock = threading.Lock()


def get_grid_cache() -> GridCache:
    """Return the process-wide grid cache."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = GridCache()
        return _default_cache
