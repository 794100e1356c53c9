"""Reader and writer for the SCHISM ASCII horizontal grid format (hgrid.gr3).

Layout of the format::

    <grid name>
    <n_elements> <n_nodes>
    <node id> <x> <y> <depth>                      (n_nodes lines)
    <element id> <k> <node 1> ... <node k>         (n_elements lines)
    <n_open> = Number of open boundaries           (optional from here)
    <total open nodes> = Total number of open boundary nodes
    <n> = Number of nodes for open boundary 1
    <node id>                                      (n lines)
    ...
    <n_land> = Number of land boundaries
    <total land nodes> = Total number of land boundary nodes
    <n> <flag> = Number of nodes for land boundary 1
    <node id>                                      (n lines)
    ...

Everything after ``!`` on a line is a comment.
"""

from __future__ import annotations

import logging
from pathlib import Path

from schism_hgrid.exceptions import DataLoadError, MeshStateError, ParseError
from schism_hgrid.mesh.model import BoundaryKind, Mesh

DEFAULT_PRECISION = 8
COMMENT_CHAR = "!"


def _strip_comment(line: str) -> str:
    return line.split(COMMENT_CHAR, 1)[0]


def _to_int(token: str, line: int, what: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise ParseError(line, f"expected integer {what}, got {token!r}") from None


def _to_float(token: str, line: int, what: str) -> float:
    try:
        # Fortran writers may emit double-precision exponents (1.5D+02)
        return float(token.replace("D", "E").replace("d", "e"))
    except ValueError:
        raise ParseError(line, f"expected number for {what}, got {token!r}") from None


def _leading_ints(tokens: list[str]) -> list[int]:
    """Return the integers at the start of a record, stopping at the first label."""
    values = []
    for token in tokens:
        try:
            values.append(int(token))
        except ValueError:
            break
    return values


class _RecordReader:
    """Forward-only iterator over the non-blank records of a text."""

    def __init__(self, text: str):
        self._lines = text.splitlines()
        self._pos = 0

    def raw_line(self, what: str) -> tuple[int, str]:
        if self._pos >= len(self._lines):
            raise ParseError(self._pos + 1, f"unexpected end of input, expected {what}")
        self._pos += 1
        return self._pos, self._lines[self._pos - 1]

    def _skip_blank(self) -> None:
        while (
            self._pos < len(self._lines)
            and not _strip_comment(self._lines[self._pos]).strip()
        ):
            self._pos += 1

    def record(self, what: str) -> tuple[int, list[str]]:
        """Return (line number, tokens) of the next non-blank record."""
        self._skip_blank()
        line, text = self.raw_line(what)
        return line, _strip_comment(text).split()

    def at_end(self) -> bool:
        self._skip_blank()
        return self._pos >= len(self._lines)

    @property
    def line(self) -> int:
        return self._pos


def _read_header(reader: _RecordReader, n_values: int, what: str) -> tuple[int, list[int]]:
    line, tokens = reader.record(what)
    values = _leading_ints(tokens)
    if len(values) < n_values:
        raise ParseError(line, f"expected {what}, got {' '.join(tokens)!r}")
    if any(v < 0 for v in values[:n_values]):
        raise ParseError(line, f"negative value in {what}")
    return line, values


def _read_boundary_block(
    reader: _RecordReader,
    mesh: Mesh,
    kind: BoundaryKind,
) -> None:
    label = kind.value
    _, (n_segments, *_) = _read_header(reader, 1, f"number of {label} boundaries")
    total_line, (declared_total, *_) = _read_header(
        reader, 1, f"total number of {label} boundary nodes"
    )

    counted = 0
    for i in range(n_segments):
        _, header = _read_header(
            reader, 1, f"node count of {label} boundary {i + 1}"
        )
        n_nodes = header[0]
        flag = header[1] if kind is BoundaryKind.LAND and len(header) > 1 else 0

        node_ids: list[int] = []
        while len(node_ids) < n_nodes:
            line, tokens = reader.record(
                f"node {len(node_ids) + 1} of {label} boundary {i + 1}"
            )
            values = _leading_ints(tokens)
            if not values:
                raise ParseError(line, f"expected node id, got {' '.join(tokens)!r}")
            node_ids.extend(values)
            if len(node_ids) > n_nodes:
                raise ParseError(
                    line,
                    f"{label} boundary {i + 1} lists more than its "
                    f"declared {n_nodes} nodes",
                )

        mesh.add_boundary_segment(kind, node_ids, flag=flag)
        counted += n_nodes

    if counted != declared_total:
        raise ParseError(
            total_line,
            f"declared {declared_total} {label} boundary nodes but "
            f"segments list {counted}",
        )


def parse(
    text: str,
    crs: str | None = None,
    logger: logging.Logger | None = None,
) -> Mesh:
    """Parse hgrid text into a finalized mesh.

    Records are accumulated in one forward pass and the mesh invariants are
    checked once at the end, so every inconsistency is reported together.

    Args:
        text: Full content of an hgrid file.
        crs: Coordinate reference system of the node coordinates.
        logger: Diagnostics sink. Defaults to this module's logger.

    Returns:
        Finalized Mesh.

    Raises:
        ParseError: If a line does not have the expected shape. No mesh is
            produced.
        InvariantError: If the parsed mesh breaks its invariants.
    """
    log = logger or logging.getLogger(__name__)
    reader = _RecordReader(text)

    if not text.strip():
        raise ParseError(1, "empty input")
    _, name_line = reader.raw_line("grid name")
    mesh = Mesh(_strip_comment(name_line).strip(), crs=crs)

    _, (n_elements, n_nodes, *_) = _read_header(
        reader, 2, "element and node counts"
    )
    log.debug(
        f"Parsing hgrid {mesh.name!r}: {n_nodes} nodes, {n_elements} elements"
    )

    for _ in range(n_nodes):
        line, tokens = reader.record("node record 'id x y z'")
        if len(tokens) != 4:
            raise ParseError(
                line, f"expected 'id x y z', got {len(tokens)} field(s)"
            )
        mesh.add_node(
            _to_int(tokens[0], line, "node id"),
            _to_float(tokens[1], line, "x"),
            _to_float(tokens[2], line, "y"),
            _to_float(tokens[3], line, "depth"),
        )

    for _ in range(n_elements):
        line, tokens = reader.record("element record 'id k n1 ... nk'")
        if len(tokens) < 2:
            raise ParseError(
                line, f"expected 'id k n1 ... nk', got {len(tokens)} field(s)"
            )
        element_id = _to_int(tokens[0], line, "element id")
        k = _to_int(tokens[1], line, "element node count")
        if k < 0 or len(tokens) != 2 + k:
            raise ParseError(
                line,
                f"element {element_id} declares {k} nodes but lists "
                f"{len(tokens) - 2}",
            )
        mesh.add_element(
            element_id, [_to_int(t, line, "node id") for t in tokens[2:]]
        )

    for kind in (BoundaryKind.OPEN, BoundaryKind.LAND):
        if reader.at_end():
            break
        _read_boundary_block(reader, mesh, kind)

    if not reader.at_end():
        log.warning(
            f"Ignoring content after the land boundary block "
            f"(line {reader.line + 1} onward)"
        )

    mesh.finalize()
    log.debug(
        f"Parsed hgrid {mesh.name!r}: {len(mesh.open_boundaries)} open and "
        f"{len(mesh.land_boundaries)} land boundary segment(s)"
    )
    return mesh


def write(mesh: Mesh, precision: int = DEFAULT_PRECISION) -> str:
    """Serialize a finalized mesh to hgrid text.

    Records are written in insertion order. Coordinates and depths use fixed
    point notation with ``precision`` decimals, so writing a re-parsed mesh
    with the same precision reproduces the text byte for byte.

    Args:
        mesh: Finalized mesh.
        precision: Number of decimals for x, y and depth.

    Returns:
        Hgrid text ending with a newline.
    """
    if not mesh.is_finalized:
        raise MeshStateError("Only a finalized mesh can be written")
    if precision < 0:
        raise ValueError("precision must be non-negative")

    lines = [mesh.name, f"{mesh.element_count} {mesh.node_count}"]
    for node in mesh.nodes():
        lines.append(
            f"{node.id} {node.x:.{precision}f} {node.y:.{precision}f} "
            f"{node.z:.{precision}f}"
        )
    for element in mesh.elements():
        ids = " ".join(str(n) for n in element.node_ids)
        lines.append(f"{element.id} {element.n_nodes} {ids}")

    for kind in (BoundaryKind.OPEN, BoundaryKind.LAND):
        segments = mesh.boundaries(kind)
        label = kind.value
        total = sum(len(s.node_ids) for s in segments)
        lines.append(f"{len(segments)} = Number of {label} boundaries")
        lines.append(f"{total} = Total number of {label} boundary nodes")
        for segment in segments:
            head = f"{len(segment.node_ids)}"
            if kind is BoundaryKind.LAND:
                head += f" {segment.flag}"
            lines.append(
                f"{head} = Number of nodes for {label} boundary {segment.index + 1}"
            )
            lines.extend(str(n) for n in segment.node_ids)

    return "\n".join(lines) + "\n"


def load_text(path: str | Path) -> str:
    """Return the text of an hgrid file, tolerating a UTF-8 byte order mark.

    Raises:
        DataLoadError: If the file does not exist or cannot be decoded.
    """
    path = Path(path)

    if not path.exists():
        raise DataLoadError(f"File not found: {path}")

    try:
        return path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise DataLoadError(f"Failed to read hgrid file {path}: {e}") from e


def read_hgrid(
    path: str | Path,
    crs: str | None = None,
    logger: logging.Logger | None = None,
) -> Mesh:
    """Read and parse an hgrid file.

    Args:
        path: Path to the hgrid file.
        crs: Coordinate reference system of the node coordinates.
        logger: Diagnostics sink.

    Returns:
        Finalized Mesh.

    Raises:
        DataLoadError: If the file cannot be read.
        ParseError: If the content is malformed.
        InvariantError: If the mesh breaks its invariants.
    """
    return parse(load_text(path), crs=crs, logger=logger)


def write_hgrid(
    mesh: Mesh,
    path: str | Path,
    precision: int = DEFAULT_PRECISION,
) -> None:
    """Write a finalized mesh to an hgrid file.

    Example:
        >>> from schism_hgrid.io import read_hgrid, write_hgrid
        >>> mesh = read_hgrid("hgrid.gr3", crs="EPSG:4326")
        >>> write_hgrid(mesh, "output/hgrid.gr3", precision=6)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(write(mesh, precision=precision), encoding="utf-8")
