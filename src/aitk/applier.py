"""Apply edit plans to the filesystem as a single all-or-nothing unit."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from .config import EngineConfig
from .errors import ConflictDetected, OperationFailed, RolledBack
from .structured import (
    ApplyResult,
    CreateFile,
    DeleteFile,
    EditOperation,
    EditPlan,
    OperationOutcome,
    OperationStatus,
    RenameFile,
    ReplaceFile,
    ReplaceRegion,
    Verdict,
    describe_operation,
)
from .tools.fsutil import atomic_write, content_digest, file_mode, read_bytes_or_none
from .tools.paths import PathRejected, RootSet

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("aitk.telemetry")

_STALE_REASON = "file changed since context was gathered"
_UNSCANNED_REASON = "path exists on disk but was not part of the scanned context"


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log one structured telemetry event as compact JSON."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def _uses_crlf(data: bytes) -> bool:
    return b"\r\n" in data


def _with_line_ending(text: str, crlf: bool) -> str:
    """Rewrite ``text`` to CRLF line endings when ``crlf`` is set."""
    if not crlf:
        return text
    return text.replace("\r\n", "\n").replace("\n", "\r\n")


def _encode_like(content: str, existing: bytes) -> bytes:
    """Encode ``content`` keeping the line endings of the file it replaces."""
    return _with_line_ending(content, _uses_crlf(existing)).encode("utf-8")


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


@dataclass(slots=True)
class _Backup:
    """Pre-mutation state of one touched path."""

    target: Path
    existed: bool
    content: bytes | None
    mode: int | None


@dataclass(slots=True)
class _Step:
    """A validated mutation waiting to be executed."""

    index: int
    operation: EditOperation
    data: bytes | None = None


@dataclass(slots=True)
class _MutationLog:
    """What has been touched on disk so far, for rollback."""

    touched: list[str] = field(default_factory=list)
    created_dirs: list[Path] = field(default_factory=list)


class EditApplier:
    """Validate an :class:`EditPlan` against the live filesystem and apply it."""

    def __init__(
        self,
        roots: RootSet,
        *,
        allow_first_occurrence: bool = False,
        dry_run: bool = False,
    ) -> None:
        self._roots = roots
        self._allow_first_occurrence = allow_first_occurrence
        self._dry_run = dry_run

    @classmethod
    def from_config(cls, roots: RootSet, config: EngineConfig) -> EditApplier:
        return cls(
            roots,
            allow_first_occurrence=config.apply.allow_first_occurrence,
            dry_run=config.apply.dry_run,
        )

    def apply(self, plan: EditPlan) -> ApplyResult:
        """Apply ``plan``; every non-committed result leaves the disk untouched."""
        try:
            targets = {path: self._roots.resolve(path) for path in plan.referenced_paths}
        except PathRejected as error:
            index = next(
                (position for position, op in enumerate(plan.operations) if error.path in op.paths),
                0,
            )
            failure = OperationFailed(error.reason, path=error.path, operation_index=index)
            return self._reject(plan, (), index, failure)

        current: dict[str, bytes | None] = {}
        for path, target in targets.items():
            if target.is_dir():
                index = next(position for position, op in enumerate(plan.operations) if path in op.paths)
                failure = OperationFailed("path is a directory", path=path, operation_index=index)
                return self._reject(plan, (), index, failure)
            current[path] = read_bytes_or_none(target)

        stale = self._stale_paths(plan, current)
        if stale:
            outcomes = tuple(
                OperationOutcome(
                    index=position,
                    operation=operation,
                    status=OperationStatus.CONFLICT_DETECTED,
                    reason=next(stale[path] for path in operation.paths if path in stale),
                )
                for position, operation in enumerate(plan.operations)
                if any(path in stale for path in operation.paths)
            )
            emit_event("edit_plan_conflict", paths=list(stale), reasons=stale)
            return ApplyResult(
                verdict=Verdict.ROLLED_BACK,
                outcomes=outcomes,
                dry_run=self._dry_run,
                error=ConflictDetected(list(stale)),
            )

        outcomes, steps, failure = self._preflight(plan, current)
        if failure is not None:
            return self._reject(plan, outcomes, failure.operation_index or 0, failure)

        if self._dry_run or not steps:
            emit_event(
                "edit_plan_committed",
                dry_run=self._dry_run,
                operations=len(plan.operations),
                applied=len(steps),
            )
            return ApplyResult(verdict=Verdict.COMMITTED, outcomes=tuple(outcomes), dry_run=self._dry_run)

        backups = {
            path: _Backup(
                target=targets[path],
                existed=current[path] is not None,
                content=current[path],
                mode=file_mode(targets[path]),
            )
            for path in plan.referenced_paths
        }
        log = _MutationLog()
        try:
            for step in steps:
                self._execute(step, targets, log)
        except OSError as error:
            restored = self._rollback(backups, log)
            failed_step = step
            position = next(i for i, outcome in enumerate(outcomes) if outcome.index == failed_step.index)
            outcomes = outcomes[:position] + [
                OperationOutcome(
                    index=failed_step.index,
                    operation=failed_step.operation,
                    status=OperationStatus.FAILED,
                    reason=f"filesystem error: {error.strerror or error}",
                )
            ]
            cause = OperationFailed(
                f"filesystem error: {error.strerror or error}",
                path=failed_step.operation.path,
                operation_index=failed_step.index,
            )
            emit_event(
                "edit_plan_rolled_back",
                reason=str(cause),
                restored=restored,
            )
            return ApplyResult(
                verdict=Verdict.ROLLED_BACK,
                outcomes=tuple(outcomes),
                restored_paths=tuple(restored),
                error=RolledBack(cause, restored=restored),
            )
        except BaseException:
            self._rollback(backups, log)
            raise

        emit_event(
            "edit_plan_committed",
            dry_run=False,
            operations=len(plan.operations),
            applied=len(steps),
            touched=log.touched,
        )
        return ApplyResult(verdict=Verdict.COMMITTED, outcomes=tuple(outcomes))

    @staticmethod
    def _stale_paths(plan: EditPlan, current: Mapping[str, bytes | None]) -> dict[str, str]:
        """Map every path whose disk state differs from the snapshot to a reason."""
        stale: dict[str, str] = {}
        for path in plan.referenced_paths:
            if path not in plan.fingerprint:
                continue
            expected = plan.fingerprint[path]
            data = current.get(path)
            actual = content_digest(data) if data is not None else None
            if actual == expected:
                continue
            # No digest means the snapshot never saw the path: it was absent,
            # ignored, unreadable or a symlink at scan time.
            stale[path] = _STALE_REASON if expected is not None else _UNSCANNED_REASON
        return stale

    def _reject(
        self,
        plan: EditPlan,
        outcomes: Sequence[OperationOutcome],
        index: int,
        failure: OperationFailed,
    ) -> ApplyResult:
        """Build the result for a plan refused before any write."""
        recorded = list(outcomes)
        if not any(outcome.index == index for outcome in recorded):
            recorded.append(
                OperationOutcome(
                    index=index,
                    operation=plan.operations[index],
                    status=OperationStatus.FAILED,
                    reason=failure.reason,
                )
            )
        emit_event(
            "edit_plan_rolled_back",
            reason=str(failure),
            operation=describe_operation(plan.operations[index]),
            restored=[],
        )
        return ApplyResult(
            verdict=Verdict.ROLLED_BACK,
            outcomes=tuple(recorded),
            dry_run=self._dry_run,
            error=failure,
        )

    def _preflight(
        self,
        plan: EditPlan,
        current: Mapping[str, bytes | None],
    ) -> tuple[list[OperationOutcome], list[_Step], OperationFailed | None]:
        """Evaluate every operation in order against an in-memory view."""
        view = dict(current)
        outcomes: list[OperationOutcome] = []
        steps: list[_Step] = []

        for index, operation in enumerate(plan.operations):
            status, reason, step = self._evaluate(index, operation, view)
            outcomes.append(OperationOutcome(index=index, operation=operation, status=status, reason=reason))
            if status is OperationStatus.FAILED:
                return outcomes, steps, OperationFailed(reason or "failed", path=operation.path, operation_index=index)
            if step is not None:
                steps.append(step)
        return outcomes, steps, None

    def _evaluate(
        self,
        index: int,
        operation: EditOperation,
        view: dict[str, bytes | None],
    ) -> tuple[OperationStatus, str | None, _Step | None]:
        if isinstance(operation, CreateFile):
            data = operation.content.encode("utf-8")
            existing = view.get(operation.path)
            if existing is not None:
                if existing == _encode_like(operation.content, existing):
                    return OperationStatus.SKIPPED_UNCHANGED, "file already has this content", None
                return OperationStatus.FAILED, "file already exists", None
            view[operation.path] = data
            return OperationStatus.APPLIED, None, _Step(index, operation, data)

        if isinstance(operation, ReplaceFile):
            existing = view.get(operation.path)
            if existing is None:
                return OperationStatus.FAILED, "file does not exist", None
            data = _encode_like(operation.content, existing)
            if existing == data:
                return OperationStatus.SKIPPED_UNCHANGED, "content unchanged", None
            view[operation.path] = data
            return OperationStatus.APPLIED, None, _Step(index, operation, data)

        if isinstance(operation, ReplaceRegion):
            existing = view.get(operation.path)
            if existing is None:
                return OperationStatus.FAILED, "file does not exist", None
            try:
                text = existing.decode("utf-8")
            except UnicodeDecodeError:
                return OperationStatus.FAILED, "file is not valid UTF-8 text", None
            crlf = _uses_crlf(existing)
            match_text = _with_line_ending(operation.match_text, crlf)
            new_text = _with_line_ending(operation.new_text, crlf)
            first = text.find(match_text)
            if first < 0:
                return OperationStatus.FAILED, "match not found", None
            if not self._allow_first_occurrence and text.find(match_text, first + 1) >= 0:
                return OperationStatus.FAILED, "ambiguous match", None
            if new_text == match_text:
                return OperationStatus.SKIPPED_UNCHANGED, "replacement equals match", None
            updated = text[:first] + new_text + text[first + len(match_text):]
            data = updated.encode("utf-8")
            view[operation.path] = data
            return OperationStatus.APPLIED, None, _Step(index, operation, data)

        if isinstance(operation, DeleteFile):
            if view.get(operation.path) is None:
                return OperationStatus.FAILED, "file does not exist", None
            view[operation.path] = None
            return OperationStatus.APPLIED, None, _Step(index, operation)

        if isinstance(operation, RenameFile):
            source = view.get(operation.from_path)
            if source is None:
                return OperationStatus.FAILED, "file does not exist", None
            if view.get(operation.to_path) is not None:
                return OperationStatus.FAILED, f"destination {operation.to_path} already exists", None
            view[operation.to_path] = source
            view[operation.from_path] = None
            return OperationStatus.APPLIED, None, _Step(index, operation, source)

        raise TypeError(f"Unsupported edit operation: {operation!r}")

    def _execute(self, step: _Step, targets: Mapping[str, Path], log: _MutationLog) -> None:
        operation = step.operation
        if isinstance(operation, (CreateFile, ReplaceFile, ReplaceRegion)):
            target = targets[operation.path]
            log.touched.append(operation.path)
            self._ensure_parent(target, log)
            mode = None if target.exists() else _default_file_mode()
            atomic_write(target, step.data or b"", mode=mode)
        elif isinstance(operation, DeleteFile):
            log.touched.append(operation.path)
            targets[operation.path].unlink()
        elif isinstance(operation, RenameFile):
            source = targets[operation.from_path]
            destination = targets[operation.to_path]
            log.touched.extend([operation.from_path, operation.to_path])
            self._ensure_parent(destination, log)
            os.replace(source, destination)
        LOGGER.debug("Applied %s", describe_operation(operation))

    @staticmethod
    def _ensure_parent(target: Path, log: _MutationLog) -> None:
        missing: list[Path] = []
        parent = target.parent
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent
        for directory in reversed(missing):
            directory.mkdir()
            log.created_dirs.append(directory)

    @staticmethod
    def _rollback(backups: Mapping[str, _Backup], log: _MutationLog) -> list[str]:
        """Restore every touched path from its backup; return restored paths."""
        restored: list[str] = []
        for path in dict.fromkeys(reversed(log.touched)):
            backup = backups[path]
            try:
                if backup.existed:
                    backup.target.parent.mkdir(parents=True, exist_ok=True)
                    atomic_write(backup.target, backup.content or b"", mode=backup.mode)
                else:
                    backup.target.unlink(missing_ok=True)
            except OSError:
                LOGGER.error("Failed to restore %s during rollback", path, exc_info=True)
                continue
            restored.append(path)
        for directory in reversed(log.created_dirs):
            try:
                directory.rmdir()
            except OSError:
                LOGGER.warning("Could not remove directory %s created during apply", directory)
        return restored


__all__ = ["EditApplier", "emit_event"]
