"""Build bounded project snapshots and render them as model context."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from .config import DEFAULT_IGNORE_PATTERNS, EngineConfig
from .tools.fsutil import content_digest, looks_binary
from .tools.listing import LANGUAGE_BY_SUFFIX, detect_language, fence_for, render_tree, walk_directory
from .tools.paths import RootSet
from .tools.signatures import extract_signatures

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SnapshotFile:
    """A regular file captured by the snapshot."""

    path: str
    content: bytes
    size_bytes: int
    content_included: bool = True
    binary: bool = False
    unreadable: bool = False

    @property
    def digest(self) -> str:
        return content_digest(self.content)


@dataclass(frozen=True, slots=True)
class ProjectSnapshot:
    """Immutable view of every file under the scanned roots."""

    roots: RootSet
    files: tuple[SnapshotFile, ...]
    directories: tuple[str, ...] = ()
    signatures: tuple[tuple[str, tuple[str, ...]], ...] = ()
    max_bytes: int | None = None
    _index: Mapping[str, SnapshotFile] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self._index:
            object.__setattr__(self, "_index", {entry.path: entry for entry in self.files})

    def get(self, path: str) -> SnapshotFile | None:
        return self._index.get(path)

    def fingerprint(self) -> dict[str, str]:
        """Map every readable snapshot path to the sha256 of its content."""
        return {entry.path: entry.digest for entry in self.files if not entry.unreadable}

    @property
    def digest(self) -> str:
        hasher = hashlib.sha256()
        for entry in self.files:
            hasher.update(entry.path.encode("utf-8"))
            hasher.update(b"\0")
            hasher.update(b"-" if entry.unreadable else entry.digest.encode("ascii"))
            hasher.update(b"\n")
        return hasher.hexdigest()

    @property
    def total_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.files)

    @property
    def included_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.files if entry.content_included)

    @property
    def omitted(self) -> tuple[SnapshotFile, ...]:
        return tuple(entry for entry in self.files if not entry.content_included)


class ContextBuilder:
    """Context assembly helper that builds bounded project snapshots."""

    DEFAULT_MAX_SNAPSHOT_BYTES = 200_000
    _SOURCE_SUFFIXES = frozenset(LANGUAGE_BY_SUFFIX) - {".txt", ".json", ".xml", ".md"}

    def __init__(
        self,
        *,
        ignore: Sequence[str] | None = None,
        max_snapshot_bytes: int | None = None,
        include_signatures: bool = False,
    ) -> None:
        self._ignore = tuple(DEFAULT_IGNORE_PATTERNS if ignore is None else ignore)
        self._max_snapshot_bytes = max_snapshot_bytes or self.DEFAULT_MAX_SNAPSHOT_BYTES
        self._include_signatures = include_signatures

    @classmethod
    def from_config(cls, config: EngineConfig) -> ContextBuilder:
        """Instantiate a builder using configuration values."""
        return cls(
            ignore=config.context.ignore,
            max_snapshot_bytes=config.context.max_snapshot_bytes,
            include_signatures=config.context.include_signatures,
        )

    @property
    def max_snapshot_bytes(self) -> int:
        return self._max_snapshot_bytes

    def build(self, roots: Sequence[Path | str]) -> ProjectSnapshot:
        """Scan ``roots`` and return a snapshot bounded by the byte ceiling.

        Raises :class:`~aitk.errors.InvalidRoot` for a missing or non-directory root.
        """
        root_set = RootSet.from_paths(roots)
        raw_files: list[tuple[str, bytes | None]] = []
        directories: list[str] = []

        for label, root in root_set:
            dirs, files = walk_directory(root, self._ignore)
            directories.extend(root_set.display_path(label, entry) for entry in dirs)
            for relative in files:
                path = root_set.display_path(label, relative)
                try:
                    data: bytes | None = (root / relative).read_bytes()
                except OSError as error:
                    LOGGER.warning("Skipping unreadable file %s: %s", path, error.strerror or error)
                    data = None
                raw_files.append((path, data))

        dropped = self._select_omitted([(path, data) for path, data in raw_files if data is not None])
        files = tuple(
            SnapshotFile(path=path, content=b"", size_bytes=0, content_included=False, unreadable=True)
            if data is None
            else SnapshotFile(
                path=path,
                content=data,
                size_bytes=len(data),
                content_included=path not in dropped and not looks_binary(data),
                binary=looks_binary(data),
            )
            for path, data in raw_files
        )

        signatures: list[tuple[str, tuple[str, ...]]] = []
        if self._include_signatures:
            for entry in files:
                if entry.binary or entry.unreadable:
                    continue
                found = extract_signatures(entry.path, entry.content.decode("utf-8", errors="replace"))
                if found:
                    signatures.append((entry.path, tuple(found)))

        snapshot = ProjectSnapshot(
            roots=root_set,
            files=files,
            directories=tuple(directories),
            signatures=tuple(signatures),
            max_bytes=self._max_snapshot_bytes,
        )
        LOGGER.debug(
            "Snapshot captured %d file(s), %d byte(s), %d omitted",
            len(files),
            snapshot.total_bytes,
            len(snapshot.omitted),
        )
        return snapshot

    def _is_source_like(self, path: str) -> bool:
        return Path(path).suffix.lower() in self._SOURCE_SUFFIXES

    def _select_omitted(self, files: Sequence[tuple[str, bytes]]) -> set[str]:
        """Choose which files fall back to tree-only entries.

        Largest non-source files go first, then the largest source files,
        until the remaining text content fits the ceiling.
        """
        textual = [(path, len(data)) for path, data in files if not looks_binary(data)]
        total = sum(size for _, size in textual)
        dropped: set[str] = set()
        if total <= self._max_snapshot_bytes:
            return dropped
        ordered = sorted(textual, key=lambda item: (self._is_source_like(item[0]), -item[1], item[0]))
        for path, size in ordered:
            if total <= self._max_snapshot_bytes:
                break
            dropped.add(path)
            total -= size
        return dropped

    def render(self, snapshot: ProjectSnapshot) -> str:
        """Serialise ``snapshot`` into the sectioned text sent to the model."""
        sections = [self._render_tree_section(snapshot)]

        content_blocks: list[str] = []
        for entry in snapshot.files:
            if not entry.content_included:
                continue
            text = entry.content.decode("utf-8", errors="replace")
            fence = fence_for(text)
            body = text if not text or text.endswith("\n") else f"{text}\n"
            content_blocks.append(f"### {entry.path}\n{fence}{detect_language(entry.path)}\n{body}{fence}")
        if content_blocks:
            sections.append("## File Contents\n" + "\n\n".join(content_blocks))

        omitted = snapshot.omitted
        if omitted:
            lines = []
            for entry in omitted:
                if entry.unreadable:
                    lines.append(f"- {entry.path} (unreadable)")
                    continue
                reason = "binary" if entry.binary else "size limit"
                lines.append(f"- {entry.path} ({entry.size_bytes} bytes, {reason})")
            sections.append("## Omitted Content\n" + "\n".join(lines))

        if snapshot.signatures:
            blocks = []
            for path, found in snapshot.signatures:
                blocks.append(f"{path}\n" + "\n".join(f"  {line}" for line in found))
            sections.append("## Signatures\n" + "\n\n".join(blocks))

        return "\n\n".join(sections)

    def _render_tree_section(self, snapshot: ProjectSnapshot) -> str:
        trees: list[str] = []
        for label, _ in snapshot.roots:
            if snapshot.roots.multi:
                prefix = f"{label}/"
                dirs = [path[len(prefix):] for path in snapshot.directories if path.startswith(prefix)]
                files = [entry.path[len(prefix):] for entry in snapshot.files if entry.path.startswith(prefix)]
                trees.append(render_tree(prefix, dirs, files))
            else:
                trees.append(
                    render_tree(".", snapshot.directories, [entry.path for entry in snapshot.files])
                )
        return "## Project Tree\n" + "\n".join(trees)


__all__ = ["ContextBuilder", "ProjectSnapshot", "SnapshotFile"]
