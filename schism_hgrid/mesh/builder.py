"""High-level HgridBuilder API for staged, validated mesh construction."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Sequence

from schism_hgrid.exceptions import (
    BuildError,
    HgridError,
    InvariantError,
    ParseError,
    TransformError,
)
from schism_hgrid.io.fetch import ResourceFetcher
from schism_hgrid.io.hgrid import load_text, parse, write, write_hgrid
from schism_hgrid.mesh.config import BuildConfig
from schism_hgrid.mesh.model import BoundaryKind, Mesh
from schism_hgrid.mesh.reproject import reproject
from schism_hgrid.mesh.validation import TopologyIssue, validate


class HgridBuilder:
    """High-level API for building a ready-to-use hgrid mesh.

    Orchestrates the full workflow:
    1. Take input as hgrid text, an hgrid file, a Mesh, or node/element calls
    2. Parse and finalize (all invariant violations reported at once)
    3. Reproject into a target CRS, if configured
    4. Run the topology validator (fatal in strict mode)

    A mesh is only handed out once every stage succeeded; failures raise a
    single ``BuildError`` carrying everything that went wrong.

    Args:
        text: Optional hgrid text to build from.
        config: Build options. Defaults to ``BuildConfig()``.
        fetcher: Resource fetcher used when reprojection needs grid files.
        logger: Diagnostics sink. Defaults to this module's logger.

    Example:
        >>> from schism_hgrid import HgridBuilder
        >>> mesh = (
        ...     HgridBuilder()
        ...     .load_hgrid("hgrid.gr3")
        ...     .set_source_crs("EPSG:4326")
        ...     .set_target_crs("EPSG:32631")
        ...     .set_strict(True)
        ...     .build()
        ... )
    """

    def __init__(
        self,
        text: str | None = None,
        config: BuildConfig | None = None,
        fetcher: ResourceFetcher | None = None,
        logger: logging.Logger | None = None,
    ):
        self._config = config or BuildConfig()
        self._fetcher = fetcher
        self._logger = logger or logging.getLogger(__name__)

        # Input (exactly one source is used)
        self._text: str | None = None
        self._source_path: Path | None = None
        self._input_mesh: Mesh | None = None
        self._assembly: Mesh | None = None

        # Results (set by build)
        self._mesh: Mesh | None = None
        self._issues: list[TopologyIssue] = []

        if text is not None:
            self.from_text(text)

    @classmethod
    def from_config(
        cls,
        entry: str | os.PathLike | Mapping[str, Any],
        fetcher: ResourceFetcher | None = None,
        logger: logging.Logger | None = None,
    ) -> HgridBuilder:
        """Create a builder from a project-file entry.

        Accepts either a bare path (``"hgrid.gr3"``) or a mapping such as
        ``{"path": "hgrid.gr3", "crs": "EPSG:4326", "strict": True}``.
        """
        if isinstance(entry, (str, os.PathLike)):
            path, options = entry, {}
        else:
            options = dict(entry)
            path = options.pop("path", None)

        builder = cls(
            config=BuildConfig.from_mapping(options), fetcher=fetcher, logger=logger
        )
        if path is not None:
            builder.load_hgrid(path)
        return builder

    @property
    def config(self) -> BuildConfig:
        """Return the current build configuration."""
        return self._config

    @property
    def mesh(self) -> Mesh | None:
        """Return the built mesh, or None before a successful build."""
        return self._mesh

    @property
    def issues(self) -> list[TopologyIssue]:
        """Return advisory issues of the last build's validation pass."""
        return list(self._issues)

    @property
    def has_input(self) -> bool:
        """Return True if an input source is set."""
        return any(
            source is not None
            for source in (self._text, self._input_mesh, self._assembly)
        )

    # ------------------------------------------------------------------
    # Input

    def _reset_input(self) -> None:
        self._text = None
        self._source_path = None
        self._input_mesh = None
        self._assembly = None
        self._mesh = None
        self._issues = []

    def from_text(self, text: str) -> HgridBuilder:
        """Use hgrid text as input.

        Returns:
            Self for method chaining.
        """
        self._reset_input()
        self._text = text
        return self

    def load_hgrid(self, path: str | Path) -> HgridBuilder:
        """Read an hgrid file as input.

        Args:
            path: Path to the hgrid file.

        Returns:
            Self for method chaining.

        Raises:
            DataLoadError: If the file cannot be read.
        """
        path = Path(path)
        self.from_text(load_text(path))
        self._source_path = path
        return self

    def set_mesh(self, mesh: Mesh) -> HgridBuilder:
        """Use an existing mesh (finalized or not) as input.

        An unfinalized mesh is copied at build time, so the caller's object
        is never finalized or relabelled.

        Returns:
            Self for method chaining.
        """
        self._reset_input()
        self._input_mesh = mesh
        return self

    def _assembly_mesh(self) -> Mesh:
        if self._text is not None or self._input_mesh is not None:
            raise HgridError(
                "Builder already has text or mesh input; "
                "node and element calls cannot be mixed with it"
            )
        if self._assembly is None or self._assembly.is_finalized:
            self._reset_input()
            self._assembly = Mesh()
        return self._assembly

    def set_name(self, name: str) -> HgridBuilder:
        """Set the grid name of a programmatically assembled mesh."""
        self._assembly_mesh().name = name
        return self

    def add_node(self, node_id: int, x: float, y: float, z: float = 0.0) -> HgridBuilder:
        """Add a node to the assembled mesh. Checked at build time."""
        self._assembly_mesh().add_node(node_id, x, y, z)
        return self

    def add_element(self, element_id: int, node_ids: Sequence[int]) -> HgridBuilder:
        """Add an element to the assembled mesh. Checked at build time."""
        self._assembly_mesh().add_element(element_id, node_ids)
        return self

    def add_boundary_segment(
        self,
        kind: BoundaryKind | str,
        node_ids: Sequence[int],
        flag: int = 0,
    ) -> HgridBuilder:
        """Add a boundary segment to the assembled mesh. Checked at build time."""
        self._assembly_mesh().add_boundary_segment(kind, node_ids, flag=flag)
        return self

    # ------------------------------------------------------------------
    # Options

    def set_config(self, config: BuildConfig) -> HgridBuilder:
        """Replace the whole build configuration."""
        self._config = config
        return self

    def set_strict(self, strict: bool = True) -> HgridBuilder:
        """Promote advisory topology issues to build failures."""
        self._config = self._config.replace(strict=strict)
        return self

    def set_precision(self, precision: int) -> HgridBuilder:
        """Set the number of decimals used by ``to_text`` and ``save``."""
        self._config = self._config.replace(precision=precision)
        return self

    def set_source_crs(self, crs: str | None) -> HgridBuilder:
        """Declare the CRS of the input coordinates."""
        self._config = self._config.replace(source_crs=crs)
        return self

    def set_target_crs(self, crs: str | None) -> HgridBuilder:
        """Reproject the mesh into ``crs`` during build."""
        self._config = self._config.replace(target_crs=crs)
        return self

    def set_fetcher(self, fetcher: ResourceFetcher | None) -> HgridBuilder:
        """Set the resource fetcher used for grid-shift files."""
        self._fetcher = fetcher
        return self

    # ------------------------------------------------------------------
    # Build

    def _validate_configuration(self) -> None:
        """Validate that an input source is set."""
        if not self.has_input:
            raise HgridError(
                "No input set. Call from_text(), load_hgrid(), set_mesh() "
                "or add_node() first."
            )

    def _load(self) -> Mesh:
        crs = self._config.source_crs
        if self._text is not None:
            return parse(self._text, crs=crs, logger=self._logger)

        if self._assembly is not None:
            mesh = self._assembly
        elif self._input_mesh.is_finalized:
            mesh = self._input_mesh
        else:
            # The caller's mesh stays in its build phase
            mesh = self._input_mesh.copy()
        if crs is not None and not mesh.is_finalized:
            mesh.crs = crs
        mesh.finalize()
        if crs is not None and mesh.crs != crs:
            mesh = mesh.with_coordinates(mesh.xy, crs=crs)
        return mesh

    def build(self, validate_topology: bool | None = None) -> Mesh:
        """Build the ready-to-use mesh.

        Args:
            validate_topology: Run the topology validator. Defaults to the
                ``strict`` option. Outside strict mode the issues are only
                logged and kept in ``issues``.

        Returns:
            Finalized mesh, reprojected if a target CRS is configured.

        Raises:
            HgridError: If no input is set.
            BuildError: With every parse error, invariant violation or
                transform error, and in strict mode every topology issue.
        """
        self._validate_configuration()
        self._mesh = None
        self._issues = []
        config = self._config

        try:
            mesh = self._load()
        except ParseError as e:
            raise BuildError([e]) from e
        except InvariantError as e:
            raise BuildError(e.violations) from e

        if config.target_crs is not None:
            try:
                mesh = reproject(
                    mesh,
                    config.target_crs,
                    fetcher=self._fetcher,
                    max_workers=config.max_workers,
                    logger=self._logger,
                )
            except TransformError as e:
                raise BuildError([e]) from e

        run_validation = config.strict if validate_topology is None else validate_topology
        if run_validation or config.strict:
            issues = validate(
                mesh,
                duplicate_tolerance=config.duplicate_tolerance,
                connectivity_threshold=config.connectivity_threshold,
                logger=self._logger,
            )
            if issues and config.strict:
                raise BuildError(issues=issues)
            for issue in issues:
                self._logger.warning(f"Topology issue: {issue}")
            self._issues = issues

        self._mesh = mesh
        self._logger.info(
            f"Built mesh {mesh.name!r}: {mesh.node_count} nodes, "
            f"{mesh.element_count} elements"
        )
        return mesh

    # ------------------------------------------------------------------
    # Output

    def _built_mesh(self) -> Mesh:
        if self._mesh is None:
            raise HgridError("Mesh has not been built yet. Call build() first.")
        return self._mesh

    def to_text(self) -> str:
        """Return the built mesh as hgrid text at the configured precision."""
        return write(self._built_mesh(), precision=self._config.precision)

    def save(self, path: str | Path) -> Path:
        """Write the built mesh to an hgrid file.

        Returns:
            The path written.
        """
        path = Path(path)
        write_hgrid(self._built_mesh(), path, precision=self._config.precision)
        return path

    def get_mesh_info(self) -> dict:
        """Return information about the configuration and the built mesh.

        Returns:
            Dictionary with build configuration and mesh statistics.
        """
        info = self._config.to_dict()
        info["source_path"] = str(self._source_path) if self._source_path else None
        if self._mesh is not None:
            info.update(self._mesh.get_mesh_info())
            info["n_issues"] = len(self._issues)
        return info
