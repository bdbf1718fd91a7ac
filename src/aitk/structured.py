"""Typed payloads that describe edit plans and their outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping, Union


@dataclass(frozen=True, slots=True)
class CreateFile:
    """Create a new file with the given content."""

    kind: ClassVar[str] = "create"

    path: str
    content: str

    @property
    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class ReplaceFile:
    """Replace the whole content of an existing file."""

    kind: ClassVar[str] = "replace"

    path: str
    content: str

    @property
    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class ReplaceRegion:
    """Replace the single occurrence of ``match_text`` inside a file."""

    kind: ClassVar[str] = "replace_region"

    path: str
    match_text: str
    new_text: str

    @property
    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class DeleteFile:
    """Remove an existing file."""

    kind: ClassVar[str] = "delete"

    path: str

    @property
    def paths(self) -> tuple[str, ...]:
        return (self.path,)


@dataclass(frozen=True, slots=True)
class RenameFile:
    """Move an existing file to a new path."""

    kind: ClassVar[str] = "rename"

    from_path: str
    to_path: str

    @property
    def path(self) -> str:
        return self.from_path

    @property
    def paths(self) -> tuple[str, ...]:
        return (self.from_path, self.to_path)


EditOperation = Union[CreateFile, ReplaceFile, ReplaceRegion, DeleteFile, RenameFile]


def describe_operation(operation: EditOperation) -> str:
    """Return a short human-readable label for ``operation``."""
    if isinstance(operation, RenameFile):
        return f"rename {operation.from_path} -> {operation.to_path}"
    return f"{operation.kind} {operation.path}"


@dataclass(frozen=True, slots=True)
class EditPlan:
    """Ordered edit operations plus the fingerprint they were planned against."""

    operations: tuple[EditOperation, ...]
    fingerprint: Mapping[str, str | None] = field(default_factory=dict)
    snapshot_digest: str | None = None

    @property
    def referenced_paths(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for operation in self.operations:
            for path in operation.paths:
                seen.setdefault(path, None)
        return tuple(seen)

    def __len__(self) -> int:
        return len(self.operations)


class OperationStatus(str, Enum):
    """Per-operation apply outcome."""

    APPLIED = "applied"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    CONFLICT_DETECTED = "conflict_detected"
    FAILED = "failed"


class Verdict(str, Enum):
    """Overall apply outcome."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True, slots=True)
class OperationOutcome:
    """Outcome of a single operation within an applied plan."""

    index: int
    operation: EditOperation
    status: OperationStatus
    reason: str | None = None

    def render(self) -> str:
        label = describe_operation(self.operation)
        if self.reason:
            return f"[{self.status.value}] {label}: {self.reason}"
        return f"[{self.status.value}] {label}"


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Per-operation outcomes plus the overall verdict of an apply run."""

    verdict: Verdict
    outcomes: tuple[OperationOutcome, ...] = ()
    dry_run: bool = False
    restored_paths: tuple[str, ...] = ()
    error: Exception | None = field(default=None, compare=False)

    @property
    def committed(self) -> bool:
        return self.verdict is Verdict.COMMITTED

    def counts(self) -> dict[str, int]:
        """Count applied operations by kind."""
        totals = {"create": 0, "replace": 0, "delete": 0, "rename": 0}
        for outcome in self.outcomes:
            if outcome.status is not OperationStatus.APPLIED:
                continue
            kind = outcome.operation.kind
            if kind == "replace_region":
                kind = "replace"
            totals[kind] += 1
        return totals

    def failures(self) -> tuple[OperationOutcome, ...]:
        return tuple(
            outcome
            for outcome in self.outcomes
            if outcome.status in {OperationStatus.FAILED, OperationStatus.CONFLICT_DETECTED}
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "dry_run": self.dry_run,
            "restored_paths": list(self.restored_paths),
            "error": str(self.error) if self.error is not None else None,
            "outcomes": [
                {
                    "index": outcome.index,
                    "operation": describe_operation(outcome.operation),
                    "status": outcome.status.value,
                    "reason": outcome.reason,
                }
                for outcome in self.outcomes
            ],
        }


__all__ = [
    "ApplyResult",
    "CreateFile",
    "DeleteFile",
    "EditOperation",
    "EditPlan",
    "OperationOutcome",
    "OperationStatus",
    "RenameFile",
    "ReplaceFile",
    "ReplaceRegion",
    "Verdict",
    "describe_operation",
]
