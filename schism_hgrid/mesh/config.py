"""Build configuration for staged mesh construction."""

from __future__ import annotations

from typing import Any, Mapping

from schism_hgrid.io.hgrid import DEFAULT_PRECISION
from schism_hgrid.mesh.validation import (
    DEFAULT_CONNECTIVITY_THRESHOLD,
    DEFAULT_DUPLICATE_TOLERANCE,
)


class BuildConfig:
    """Options controlling ``HgridBuilder.build``.

    Args:
        strict: Promote advisory topology issues to build failures.
        precision: Decimals used when writing coordinates and depths.
        source_crs: CRS of the input coordinates (e.g., "EPSG:4326").
        target_crs: If set, the built mesh is reprojected into this CRS.
        duplicate_tolerance: Distance under which nodes count as duplicates.
        connectivity_threshold: Fraction of non-Delaunay element sides above
            which an element is flagged.
        max_workers: Thread pool size for reprojection (None: default).

    Example:
        >>> config = BuildConfig(strict=True, precision=6, source_crs="EPSG:4326")
        >>> config.replace(precision=10).precision
        10
    """

    _FIELDS = (
        "strict",
        "precision",
        "source_crs",
        "target_crs",
        "duplicate_tolerance",
        "connectivity_threshold",
        "max_workers",
    )

    def __init__(
        self,
        strict: bool = False,
        precision: int = DEFAULT_PRECISION,
        source_crs: str | None = None,
        target_crs: str | None = None,
        duplicate_tolerance: float = DEFAULT_DUPLICATE_TOLERANCE,
        connectivity_threshold: float = DEFAULT_CONNECTIVITY_THRESHOLD,
        max_workers: int | None = None,
    ):
        if isinstance(precision, bool) or not isinstance(precision, int):
            raise ValueError("precision must be an integer")
        if precision < 0:
            raise ValueError("precision must be non-negative")
        if duplicate_tolerance <= 0:
            raise ValueError("duplicate_tolerance must be positive")
        if not 0.0 <= connectivity_threshold <= 1.0:
            raise ValueError("connectivity_threshold must be within [0, 1]")
        if max_workers is not None and max_workers <= 0:
            raise ValueError("max_workers must be positive")

        self._strict = bool(strict)
        self._precision = precision
        self._source_crs = source_crs
        self._target_crs = target_crs
        self._duplicate_tolerance = float(duplicate_tolerance)
        self._connectivity_threshold = float(connectivity_threshold)
        self._max_workers = max_workers

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> BuildConfig:
        """Create configuration from a mapping, e.g. a parsed project file.

        ``crs`` is accepted as an alias of ``source_crs``.

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        options = dict(options)
        if "crs" in options:
            if "source_crs" in options:
                raise ValueError("give either 'crs' or 'source_crs', not both")
            options["source_crs"] = options.pop("crs")
        unknown = sorted(set(options) - set(cls._FIELDS))
        if unknown:
            raise ValueError(f"Unknown build option(s): {', '.join(unknown)}")
        return cls(**options)

    def replace(self, **changes: Any) -> BuildConfig:
        """Return a copy with some options changed."""
        values = self.to_dict()
        values.update(changes)
        return BuildConfig.from_mapping(values)

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self._FIELDS}

    @property
    def strict(self) -> bool:
        return self._strict

    @property
    def precision(self) -> int:
        return self._precision

    @property
    def source_crs(self) -> str | None:
        return self._source_crs

    @property
    def target_crs(self) -> str | None:
        return self._target_crs

    @property
    def duplicate_tolerance(self) -> float:
        return self._duplicate_tolerance

    @property
    def connectivity_threshold(self) -> float:
        return self._connectivity_threshold

    @property
    def max_workers(self) -> int | None:
        return self._max_workers

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BuildConfig):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"BuildConfig({fields})"
