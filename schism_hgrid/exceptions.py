"""Custom exceptions for the schism_hgrid package."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from schism_hgrid.mesh.validation import TopologyIssue


class HgridError(Exception):
    """Base exception for schism_hgrid package."""

    pass


class DataLoadError(HgridError):
    """Failed to load data from file."""

    pass


class MeshStateError(HgridError):
    """Operation not allowed in the mesh's current phase."""

    pass


class ParseError(HgridError):
    """Malformed hgrid input.

    Args:
        line: 1-based line number where tokenizing failed.
        reason: Human readable description of the problem.
    """

    def __init__(self, line: int, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"line {line}: {reason}")


@dataclass(frozen=True)
class Violation:
    """A single broken mesh invariant found by ``Mesh.finalize``."""

    code: str
    message: str

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class InvariantError(HgridError):
    """Mesh failed its global invariant pass.

    Carries every violation found, not just the first one.
    """

    def __init__(self, violations: Sequence[Violation]):
        self.violations = list(violations)
        lines = "\n  ".join(str(v) for v in self.violations)
        super().__init__(
            f"{len(self.violations)} mesh invariant violation(s):\n  {lines}"
        )


class TransformErrorCategory(str, Enum):
    """Failure classes of a reprojection, used by callers for retry policy."""

    NETWORK = "network"
    PROJECTION_DEFINITION = "projection-definition"
    NUMERIC = "numeric"


class TransformError(HgridError):
    """Coordinate reprojection failed; no coordinates were changed."""

    def __init__(self, category: TransformErrorCategory, message: str):
        self.category = TransformErrorCategory(category)
        super().__init__(f"{self.category.value}: {message}")

    @property
    def retryable(self) -> bool:
        """Return True for failures that may succeed on a later attempt."""
        return self.category is TransformErrorCategory.NETWORK


class FetchError(HgridError):
    """A coordinate-system resource could not be fetched."""

    def __init__(self, identifier: str, message: str, attempts: int = 1):
        self.identifier = identifier
        self.attempts = attempts
        super().__init__(
            f"failed to fetch {identifier!r} after {attempts} attempt(s): "
            f"{message}"
        )


class BuildError(HgridError):
    """Staged build failed.

    Aggregates every fatal error met during the build and, in strict mode,
    every advisory topology issue.
    """

    def __init__(
        self,
        errors: Sequence[object] = (),
        issues: Sequence[TopologyIssue] = (),
    ):
        self.errors = list(errors)
        self.issues = list(issues)
        parts = [str(e) for e in self.errors] + [str(i) for i in self.issues]
        summary = "\n  ".join(parts)
        super().__init__(
            f"build failed with {len(self.errors)} error(s) and "
            f"{len(self.issues)} topology issue(s):\n  {summary}"
        )
