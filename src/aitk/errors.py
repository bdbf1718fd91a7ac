"""Error taxonomy shared by the edit engine components."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

__all__ = [
    "ConflictDetected",
    "EditEngineError",
    "InvalidRoot",
    "MalformedResponse",
    "ModelUnavailable",
    "OperationFailed",
    "PromptTooLarge",
    "RolledBack",
]


class EditEngineError(RuntimeError):
    """Base error raised by the edit engine."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class InvalidRoot(EditEngineError):
    """Raised when a scan root does not exist or is not a directory."""

    def __init__(self, root: str) -> None:
        super().__init__(f'"{root}" is not a valid directory.', details={"root": root})
        self.root = root


class ModelUnavailable(EditEngineError):
    """Raised when the model client fails or times out."""


class PromptTooLarge(EditEngineError):
    """Raised when the fixed parts of a prompt exceed the prompt budget."""


class MalformedResponse(EditEngineError):
    """Raised when a model response violates the edit grammar."""

    def __init__(
        self,
        reason: str,
        *,
        line: int | None = None,
        operation_index: int | None = None,
    ) -> None:
        location = []
        if line is not None:
            location.append(f"line {line}")
        if operation_index is not None:
            location.append(f"operation {operation_index + 1}")
        message = reason if not location else f"{reason} ({', '.join(location)})"
        super().__init__(
            message,
            details={"reason": reason, "line": line, "operation_index": operation_index},
        )
        self.reason = reason
        self.line = line
        self.operation_index = operation_index


class ConflictDetected(EditEngineError):
    """Raised when files changed on disk after the context was gathered."""

    def __init__(self, paths: Sequence[str]) -> None:
        ordered = tuple(paths)
        super().__init__(
            "Files changed since context was gathered: " + ", ".join(ordered),
            details={"paths": list(ordered)},
        )
        self.paths = ordered


class OperationFailed(EditEngineError):
    """Raised when a single edit operation cannot be applied."""

    def __init__(self, reason: str, *, path: str, operation_index: int | None = None) -> None:
        super().__init__(
            f"{path}: {reason}",
            details={"reason": reason, "path": path, "operation_index": operation_index},
        )
        self.reason = reason
        self.path = path
        self.operation_index = operation_index


class RolledBack(EditEngineError):
    """Raised when an applied plan had to be reverted."""

    def __init__(self, cause: EditEngineError | OSError, *, restored: Sequence[str] = ()) -> None:
        super().__init__(
            f"Edit plan rolled back: {cause}",
            details={"cause": str(cause), "restored": list(restored)},
        )
        self.cause = cause
        self.restored = tuple(restored)
