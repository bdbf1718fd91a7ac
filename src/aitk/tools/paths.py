"""Path normalisation and root containment for edit targets."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Iterator, Sequence

from ..errors import InvalidRoot

__all__ = ["PathRejected", "RootSet", "normalize_relative_path"]

WINDOWS_ABSOLUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z]:")


class PathRejected(ValueError):
    """Raised when a candidate path violates containment rules."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{reason}: {path!r}")
        self.path = path
        self.reason = reason


def normalize_relative_path(candidate: str) -> str:
    """Return the POSIX-normalised form of a root-relative path.

    ``..`` segments are folded; a path that climbs above its root, absolute
    paths, and anything inside ``.git`` are rejected.
    """
    normalized = candidate.strip().replace("\\", "/")
    if not normalized:
        raise PathRejected(candidate, "path is empty")
    if normalized.startswith("/") or WINDOWS_ABSOLUTE_PATTERN.match(normalized):
        raise PathRejected(candidate, "absolute paths are not permitted")

    parts: list[str] = []
    for part in normalized.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise PathRejected(candidate, "path escapes the project root")
            parts.pop()
            continue
        parts.append(part)

    if not parts:
        raise PathRejected(candidate, "path does not name a file")
    if ".git" in parts:
        raise PathRejected(candidate, "paths inside .git are not permitted")
    return "/".join(parts)


@dataclass(frozen=True, slots=True)
class RootSet:
    """Scanned roots with the labels used to address them.

    A single root is addressed with plain relative paths. With several roots
    every path starts with the root's label.
    """

    entries: tuple[tuple[str, Path], ...]

    @classmethod
    def from_paths(cls, roots: Sequence[Path | str]) -> RootSet:
        if not roots:
            raise ValueError("At least one root directory is required.")
        entries: list[tuple[str, Path]] = []
        used: set[str] = set()
        for raw in roots:
            path = Path(raw)
            if not path.is_dir():
                raise InvalidRoot(str(raw))
            resolved = path.resolve()
            base = resolved.name or "root"
            label = base
            counter = 2
            while label in used:
                label = f"{base}-{counter}"
                counter += 1
            used.add(label)
            entries.append((label, resolved))
        return cls(entries=tuple(entries))

    @property
    def multi(self) -> bool:
        return len(self.entries) > 1

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(label for label, _ in self.entries)

    def __iter__(self) -> Iterator[tuple[str, Path]]:
        return iter(self.entries)

    def display_path(self, label: str, relative: str) -> str:
        """Render the snapshot path for ``relative`` inside root ``label``."""
        return f"{label}/{relative}" if self.multi else relative

    def check_path(self, candidate: str) -> str:
        """Normalise ``candidate`` and verify it addresses one of the roots."""
        normalized = normalize_relative_path(candidate)
        if self.multi:
            head, _, rest = normalized.partition("/")
            if head not in self.labels or not rest:
                raise PathRejected(
                    candidate,
                    "path must start with one of the root labels " + ", ".join(self.labels),
                )
        return normalized

    def resolve(self, candidate: str) -> Path:
        """Map a snapshot path to an absolute filesystem path inside its root."""
        normalized = self.check_path(candidate)
        if self.multi:
            label, _, relative = normalized.partition("/")
            root = dict(self.entries)[label]
        else:
            relative = normalized
            root = self.entries[0][1]
        target = root / relative
        parent = target.parent.resolve(strict=False)
        if not parent.is_relative_to(root):
            raise PathRejected(candidate, "resolved path escapes the project root")
        return parent / target.name
