"""
Constraint Validator

Turns free-text goal constraints ("don't change the public API",
"no new dependencies") into checks over proposed changes.

The rule table is a heuristic, not a guarantee: patterns are matched by
substring against the constraint text and checks inspect unified-diff
patches line by line. The engine treats every violation as advisory and
logs it without blocking the task.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Callable

from goalengine.core.exceptions import ConstraintViolationError
from goalengine.core.types import Change, ChangeType


class ConstraintKind(str, Enum):
    """Category a constraint was parsed into."""

    API = "api"
    COMPATIBILITY = "compatibility"
    TESTING = "testing"
    DEPENDENCIES = "dependencies"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ConstraintViolation:
    """One change that breaks one constraint."""

    constraint: str
    kind: ConstraintKind
    file_path: str
    message: str

    def __str__(self) -> str:
        return f"change to {self.file_path} violates constraint ({self.constraint}): {self.message}"


# A check sees the change under test plus the whole batch it belongs to.
ChangeCheck = Callable[[Change, list[Change]], str | None]


@dataclass(frozen=True)
class Constraint:
    """A parsed constraint and its check."""

    description: str
    kind: ConstraintKind
    check: ChangeCheck


# =============================================================================
# Patch inspection helpers
# =============================================================================

_PY_DEF = re.compile(r"^\s*(?:async\s+def|def|class)\s+([A-Za-z_]\w*)")
_GO_FUNC = re.compile(r"^\s*func\s+(?:\([^)]*\)\s*)?([A-Za-z_]\w*)")
_GO_TYPE = re.compile(r"^\s*type\s+([A-Za-z_]\w*)")
_IMPORT = re.compile(r"^\s*(?:import\s|from\s+\S+\s+import\s|require\(|#include\s)")

_SOURCE_SUFFIXES = {".py", ".go", ".js", ".ts", ".java", ".rb", ".rs", ".kt", ".c", ".cpp", ".cs"}
_MANIFESTS = {
    "requirements.txt",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "go.mod",
    "package.json",
    "cargo.toml",
    "gemfile",
    "pom.xml",
    "build.gradle",
}


def _patch_lines(patch: str, marker: str) -> list[str]:
    """Added ('+') or removed ('-') lines, without diff headers."""
    header = marker * 3
    return [
        line[1:]
        for line in patch.splitlines()
        if line.startswith(marker) and not line.startswith(header)
    ]


def _defined_symbol(line: str) -> tuple[str, bool] | None:
    """Name defined on ``line`` and whether it is public."""
    match = _PY_DEF.match(line)
    if match:
        name = match.group(1)
        return name, not name.startswith("_")

    for pattern in (_GO_FUNC, _GO_TYPE):
        match = pattern.match(line)
        if match:
            name = match.group(1)
            return name, name[0].isupper()

    return None


def is_test_file(file_path: str) -> bool:
    path = PurePosixPath(file_path.replace("\\", "/"))
    name = path.name.lower()
    if any(part in ("tests", "test", "__tests__") for part in path.parts[:-1]):
        return True
    return (
        name.startswith("test_")
        or name.endswith(("_test.py", "_test.go", "_spec.rb"))
        or ".test." in name
        or ".spec." in name
    )


def _is_source_file(file_path: str) -> bool:
    return PurePosixPath(file_path).suffix.lower() in _SOURCE_SUFFIXES


# =============================================================================
# Checks
# =============================================================================

def _check_public_api(change: Change, batch: list[Change]) -> str | None:
    for marker, verb in (("+", "adds"), ("-", "removes")):
        for line in _patch_lines(change.patch, marker):
            symbol = _defined_symbol(line)
            if symbol and symbol[1]:
                return f"{verb} public definition {symbol[0]}"
    return None


def _check_backward_compat(change: Change, batch: list[Change]) -> str | None:
    if change.type == ChangeType.DELETE and _is_source_file(change.file_path):
        return "deletes a source file"
    for line in _patch_lines(change.patch, "-"):
        symbol = _defined_symbol(line)
        if symbol:
            return f"removes definition {symbol[0]}"
    return None


def _check_tests_included(change: Change, batch: list[Change]) -> str | None:
    if change.type == ChangeType.DELETE:
        return None
    if not _is_source_file(change.file_path) or is_test_file(change.file_path):
        return None
    if any(is_test_file(other.file_path) for other in batch):
        return None
    return "source change without accompanying test changes"


def _check_no_new_dependencies(change: Change, batch: list[Change]) -> str | None:
    if PurePosixPath(change.file_path).name.lower() in _MANIFESTS:
        return "modifies dependency manifest"
    for line in _patch_lines(change.patch, "+"):
        if _IMPORT.match(line):
            return f"adds import: {line.strip()}"
    return None


def _check_nothing(change: Change, batch: list[Change]) -> str | None:
    # Custom constraints need human review.
    return None


# First matching row wins.
_RULES: list[tuple[Callable[[str], bool], ConstraintKind, ChangeCheck]] = [
    (lambda text: "public api" in text or "api" in text, ConstraintKind.API, _check_public_api),
    (lambda text: "backward compat" in text, ConstraintKind.COMPATIBILITY, _check_backward_compat),
    (lambda text: "test" in text or "coverage" in text, ConstraintKind.TESTING, _check_tests_included),
    (lambda text: "no" in text and "depend" in text, ConstraintKind.DEPENDENCIES, _check_no_new_dependencies),
]


def parse_constraint(text: str) -> Constraint:
    lower = text.lower()
    for matches, kind, check in _RULES:
        if matches(lower):
            return Constraint(description=text, kind=kind, check=check)
    return Constraint(description=text, kind=ConstraintKind.CUSTOM, check=_check_nothing)


class ConstraintValidator:
    """
    Validates proposed changes against goal constraints.

    Usage:
        validator = ConstraintValidator(goal.constraints)
        for violation in validator.validate_changes(changes):
            logger.warning("agent.act.constraint_violation", violation=str(violation))
    """

    def __init__(self, constraints: list[str] | None = None):
        self._constraints = [parse_constraint(text) for text in constraints or [] if text.strip()]

    @property
    def constraints(self) -> list[Constraint]:
        return list(self._constraints)

    def validate_changes(self, changes: list[Change]) -> list[ConstraintViolation]:
        """Every violation in the batch, in change order then constraint order."""
        violations: list[ConstraintViolation] = []
        for change in changes:
            for constraint in self._constraints:
                message = constraint.check(change, changes)
                if message:
                    violations.append(
                        ConstraintViolation(
                            constraint=constraint.description,
                            kind=constraint.kind,
                            file_path=change.file_path,
                            message=message,
                        )
                    )
        return violations

    def check_changes(self, changes: list[Change]) -> None:
        """
        Raises:
            ConstraintViolationError: for the first violation found
        """
        violations = self.validate_changes(changes)
        if violations:
            first = violations[0]
            raise ConstraintViolationError(
                str(first),
                context={
                    "constraint": first.constraint,
                    "kind": first.kind.value,
                    "file_path": first.file_path,
                    "violations": len(violations),
                },
            )
