"""Strict parser that turns model responses into edit plans.

The grammar is documented in :data:`aitk.prompts.EDIT_GRAMMAR`; this module
and the prompt share the same marker constants. Parsing never touches the
filesystem: path containment is checked lexically against the scanned roots
and the plan fingerprint is copied from the snapshot.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from . import prompts
from .context_builder import ProjectSnapshot
from .errors import MalformedResponse
from .structured import CreateFile, DeleteFile, EditOperation, EditPlan, RenameFile, ReplaceFile, ReplaceRegion
from .tools.paths import PathRejected, RootSet, normalize_relative_path

__all__ = ["EditPlanParser", "parse_edit_plan", "render_edit_plan"]

_CONTENT_KINDS = {"CREATE": CreateFile, "REPLACE": ReplaceFile}
_PATH_ONLY_KINDS = {"DELETE": DeleteFile}
_KNOWN_KINDS = ("CREATE", "REPLACE", "REPLACE_REGION", "DELETE", "RENAME")


def _normalise_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


class EditPlanParser:
    """Parse raw responses against a fixed set of roots and a fingerprint."""

    def __init__(
        self,
        *,
        roots: RootSet | None = None,
        fingerprint: Mapping[str, str] | None = None,
        snapshot_digest: str | None = None,
    ) -> None:
        self._roots = roots
        self._fingerprint = fingerprint
        self._snapshot_digest = snapshot_digest

    @classmethod
    def for_snapshot(cls, snapshot: ProjectSnapshot) -> EditPlanParser:
        return cls(
            roots=snapshot.roots,
            fingerprint=snapshot.fingerprint(),
            snapshot_digest=snapshot.digest,
        )

    def parse(self, raw: str) -> EditPlan:
        """Parse ``raw`` into an :class:`EditPlan` or raise :class:`MalformedResponse`."""
        lines = _normalise_line_endings(raw).split("\n")
        index = 0
        while index < len(lines) and not lines[index].startswith(prompts.HEADER_PREFIX):
            index += 1
        if index >= len(lines):
            raise MalformedResponse("response contains no operation blocks")

        operations: list[EditOperation] = []
        header_lines: list[int] = []
        ended = False

        while index < len(lines):
            line = lines[index]
            if not line.strip():
                index += 1
                continue
            if line.rstrip() == prompts.END_MARKER:
                ended = True
                break
            if not line.startswith(prompts.HEADER_PREFIX):
                raise MalformedResponse(
                    f"unexpected text outside an operation block: {line.strip()[:80]!r}",
                    line=index + 1,
                )
            header_lines.append(index + 1)
            operation, index = self._parse_block(lines, index, len(operations))
            operations.append(operation)

        if not ended:
            raise MalformedResponse(
                f"truncated response: missing {prompts.END_MARKER!r} terminator",
                line=len(lines),
            )
        if not operations:
            raise MalformedResponse("plan contains no operations", line=index + 1)

        self._check_conflicts(operations, header_lines)

        plan_fingerprint: dict[str, str | None] = {}
        if self._fingerprint is not None:
            for operation in operations:
                for path in operation.paths:
                    plan_fingerprint.setdefault(path, self._fingerprint.get(path))
        return EditPlan(
            operations=tuple(operations),
            fingerprint=plan_fingerprint,
            snapshot_digest=self._snapshot_digest,
        )

    def _parse_block(self, lines: Sequence[str], index: int, op_index: int) -> tuple[EditOperation, int]:
        header_line = index + 1
        kind, _, argument = lines[index][len(prompts.HEADER_PREFIX):].strip().partition(" ")
        argument = argument.strip()
        index += 1

        if kind not in _KNOWN_KINDS:
            raise MalformedResponse(
                f"unknown operation {kind!r}; expected one of {', '.join(_KNOWN_KINDS)}",
                line=header_line,
                operation_index=op_index,
            )
        if not argument:
            raise MalformedResponse(f"{kind} requires a path", line=header_line, operation_index=op_index)

        if kind in _CONTENT_KINDS:
            path = self._check_path(argument, header_line, op_index)
            body, index = self._read_body(lines, index, prompts.CONTENT_BODY, op_index)
            if body and body[-1].rstrip() == prompts.NO_NEWLINE_MARKER:
                content = "\n".join(body[:-1])
            else:
                content = "".join(f"{body_line}\n" for body_line in body)
            return _CONTENT_KINDS[kind](path=path, content=content), index

        if kind == "REPLACE_REGION":
            path = self._check_path(argument, header_line, op_index)
            match_body, index = self._read_body(lines, index, prompts.MATCH_BODY, op_index)
            match_text = "\n".join(match_body)
            if not match_text:
                raise MalformedResponse(
                    "REPLACE_REGION requires non-empty MATCH text",
                    line=header_line,
                    operation_index=op_index,
                )
            with_body, index = self._read_body(lines, index, prompts.WITH_BODY, op_index)
            return ReplaceRegion(path=path, match_text=match_text, new_text="\n".join(with_body)), index

        if kind in _PATH_ONLY_KINDS:
            path = self._check_path(argument, header_line, op_index)
            return _PATH_ONLY_KINDS[kind](path=path), index

        source, separator, destination = argument.partition(prompts.RENAME_SEPARATOR)
        if not separator or not source.strip() or not destination.strip():
            raise MalformedResponse(
                f"RENAME requires '<old path>{prompts.RENAME_SEPARATOR}<new path>'",
                line=header_line,
                operation_index=op_index,
            )
        from_path = self._check_path(source, header_line, op_index)
        to_path = self._check_path(destination, header_line, op_index)
        if from_path == to_path:
            raise MalformedResponse(
                f"RENAME source and destination are the same: {from_path}",
                line=header_line,
                operation_index=op_index,
            )
        return RenameFile(from_path=from_path, to_path=to_path), index

    @staticmethod
    def _read_body(lines: Sequence[str], index: int, name: str, op_index: int) -> tuple[list[str], int]:
        """Read a ``<<<NAME`` ... ``>>>NAME`` body starting at ``index``."""
        opening = f"{prompts.BODY_OPEN}{name}"
        closing = f"{prompts.BODY_CLOSE}{name}"
        while index < len(lines) and not lines[index].strip():
            index += 1
        if index >= len(lines):
            raise MalformedResponse(
                f"truncated response: expected {opening!r}",
                line=len(lines),
                operation_index=op_index,
            )
        if lines[index].rstrip() != opening:
            raise MalformedResponse(
                f"expected {opening!r}, found {lines[index].strip()[:80]!r}",
                line=index + 1,
                operation_index=op_index,
            )
        open_line = index + 1
        index += 1
        body: list[str] = []
        while index < len(lines):
            if lines[index].rstrip() == closing:
                return body, index + 1
            body.append(lines[index])
            index += 1
        raise MalformedResponse(
            f"truncated response: {opening!r} is never closed by {closing!r}",
            line=open_line,
            operation_index=op_index,
        )

    def _check_path(self, candidate: str, line: int, op_index: int) -> str:
        try:
            if self._roots is not None:
                return self._roots.check_path(candidate)
            return normalize_relative_path(candidate)
        except PathRejected as error:
            raise MalformedResponse(
                f"{error.reason}: {candidate.strip()!r}",
                line=line,
                operation_index=op_index,
            ) from error

    @staticmethod
    def _check_conflicts(operations: Sequence[EditOperation], header_lines: Sequence[int]) -> None:
        """Reject operations whose intents on the same path contradict each other.

        Tracks each path as ``created``, ``written`` or ``deleted`` while
        walking the plan. Delete-then-create and rename-then-edit are fine;
        writing a path twice via CREATE, touching a path after it was removed,
        or removing a path the plan itself wrote are not.
        """
        state: dict[str, str] = {}

        def conflict(reason: str, position: int) -> MalformedResponse:
            return MalformedResponse(
                f"conflicting operations: {reason}",
                line=header_lines[position],
                operation_index=position,
            )

        for position, operation in enumerate(operations):
            if isinstance(operation, CreateFile):
                previous = state.get(operation.path)
                if previous in {"created", "written"}:
                    raise conflict(f"{operation.path} is already written earlier in the plan", position)
                state[operation.path] = "created"
            elif isinstance(operation, (ReplaceFile, ReplaceRegion)):
                previous = state.get(operation.path)
                if previous == "deleted":
                    raise conflict(f"{operation.path} was deleted or renamed away earlier in the plan", position)
                state[operation.path] = "created" if previous == "created" else "written"
            elif isinstance(operation, DeleteFile):
                previous = state.get(operation.path)
                if previous == "deleted":
                    raise conflict(f"{operation.path} is deleted twice", position)
                if previous in {"created", "written"}:
                    raise conflict(f"{operation.path} is deleted after being written earlier in the plan", position)
                state[operation.path] = "deleted"
            elif isinstance(operation, RenameFile):
                if state.get(operation.from_path) == "deleted":
                    raise conflict(
                        f"{operation.from_path} was deleted or renamed away earlier in the plan", position
                    )
                if state.get(operation.to_path) in {"created", "written"}:
                    raise conflict(f"{operation.to_path} is already written earlier in the plan", position)
                state[operation.from_path] = "deleted"
                state[operation.to_path] = "created"


def parse_edit_plan(
    raw: str,
    *,
    snapshot: ProjectSnapshot | None = None,
    roots: RootSet | None = None,
) -> EditPlan:
    """Parse ``raw`` using the roots and fingerprint of ``snapshot`` when given."""
    if snapshot is not None:
        return EditPlanParser.for_snapshot(snapshot).parse(raw)
    return EditPlanParser(roots=roots).parse(raw)


def _render_body(name: str, text: str, *, newline_terminated: bool) -> list[str]:
    lines = [f"{prompts.BODY_OPEN}{name}"]
    if newline_terminated:
        if text.endswith("\n"):
            lines.extend(text[:-1].split("\n"))
        elif text:
            lines.extend(text.split("\n"))
            lines.append(prompts.NO_NEWLINE_MARKER)
    else:
        lines.extend(text.split("\n"))
    lines.append(f"{prompts.BODY_CLOSE}{name}")
    return lines


def render_edit_plan(plan: EditPlan | Sequence[EditOperation]) -> str:
    """Render operations in the edit grammar (the inverse of parsing)."""
    operations = plan.operations if isinstance(plan, EditPlan) else tuple(plan)
    lines: list[str] = []
    for operation in operations:
        if isinstance(operation, CreateFile):
            lines.append(f"{prompts.HEADER_PREFIX}CREATE {operation.path}")
            lines.extend(_render_body(prompts.CONTENT_BODY, operation.content, newline_terminated=True))
        elif isinstance(operation, ReplaceFile):
            lines.append(f"{prompts.HEADER_PREFIX}REPLACE {operation.path}")
            lines.extend(_render_body(prompts.CONTENT_BODY, operation.content, newline_terminated=True))
        elif isinstance(operation, ReplaceRegion):
            lines.append(f"{prompts.HEADER_PREFIX}REPLACE_REGION {operation.path}")
            lines.extend(_render_body(prompts.MATCH_BODY, operation.match_text, newline_terminated=False))
            lines.extend(_render_body(prompts.WITH_BODY, operation.new_text, newline_terminated=False))
        elif isinstance(operation, DeleteFile):
            lines.append(f"{prompts.HEADER_PREFIX}DELETE {operation.path}")
        elif isinstance(operation, RenameFile):
            lines.append(
                f"{prompts.HEADER_PREFIX}RENAME {operation.from_path}{prompts.RENAME_SEPARATOR}{operation.to_path}"
            )
        lines.append("")
    lines.append(prompts.END_MARKER)
    return "\n".join(lines) + "\n"
