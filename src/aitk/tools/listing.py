"""Directory walking plus the tree and content listings sent as context."""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Iterable, Sequence

from ..config import DEFAULT_IGNORE_PATTERNS
from .fsutil import looks_binary

__all__ = [
    "LANGUAGE_BY_SUFFIX",
    "detect_language",
    "fence_for",
    "is_ignored",
    "list_contents",
    "list_tree",
    "render_tree",
    "walk_directory",
]

LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".sh": "bash",
    ".bash": "bash",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".kt": "kotlin",
    ".swift": "swift",
    ".sql": "sql",
    ".ini": "ini",
    ".cfg": "ini",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".xml": "xml",
    ".txt": "text",
}
_LANGUAGE_BY_NAME = {
    "makefile": "makefile",
    "dockerfile": "dockerfile",
}


def detect_language(path: str) -> str:
    name = Path(path).name.lower()
    if name in _LANGUAGE_BY_NAME:
        return _LANGUAGE_BY_NAME[name]
    return LANGUAGE_BY_SUFFIX.get(Path(path).suffix.lower(), "text")


def fence_for(text: str) -> str:
    """Return a backtick fence longer than any backtick run inside ``text``."""
    longest = 0
    current = 0
    for char in text:
        if char == "`":
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return "`" * max(3, longest + 1)


def is_ignored(name: str, relative: str, patterns: Iterable[str]) -> bool:
    """Match ignore globs against both the entry name and its relative path."""
    for pattern in patterns:
        if fnmatch.fnmatchcase(name, pattern) or fnmatch.fnmatchcase(relative, pattern):
            return True
    return False


def walk_directory(
    root: Path,
    ignore: Sequence[str] = DEFAULT_IGNORE_PATTERNS,
) -> tuple[list[str], list[str]]:
    """Return sorted relative directory and regular-file paths under ``root``.

    Symlinks are neither followed nor listed.
    """
    directories: list[str] = []
    files: list[str] = []

    for current_root, dirs, filenames in os.walk(root, followlinks=False):
        rel_dir = Path(current_root).relative_to(root)
        kept_dirs = []
        for name in sorted(dirs):
            relative = (rel_dir / name).as_posix() if rel_dir != Path(".") else name
            if os.path.islink(os.path.join(current_root, name)):
                continue
            if is_ignored(name, relative, ignore):
                continue
            kept_dirs.append(name)
            directories.append(relative)
        dirs[:] = kept_dirs
        for name in filenames:
            relative = (rel_dir / name).as_posix() if rel_dir != Path(".") else name
            full = os.path.join(current_root, name)
            if os.path.islink(full) or not os.path.isfile(full):
                continue
            if is_ignored(name, relative, ignore):
                continue
            files.append(relative)

    directories.sort()
    files.sort()
    return directories, files


def render_tree(label: str, directories: Iterable[str], files: Iterable[str]) -> str:
    """Render directories and files as a box-drawing tree under ``label``."""
    tree_root: dict[str, object] = {}
    entries = [(path, True) for path in directories] + [(path, False) for path in files]
    for path, is_dir in entries:
        parts = path.strip("/").split("/")
        node = tree_root
        for index, part in enumerate(parts):
            is_last = index == len(parts) - 1
            if not is_last or is_dir:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            else:
                node.setdefault(part, None)

    lines: list[str] = [label]

    def render(node: dict[str, object], prefix: str) -> None:
        ordered = sorted(
            node.items(),
            key=lambda entry: (0 if isinstance(entry[1], dict) else 1, entry[0]),
        )
        for position, (name, child) in enumerate(ordered):
            is_last = position == len(ordered) - 1
            connector = "└── " if is_last else "├── "
            suffix = "/" if isinstance(child, dict) else ""
            lines.append(f"{prefix}{connector}{name}{suffix}")
            if isinstance(child, dict) and child:
                render(child, prefix + ("    " if is_last else "│   "))

    render(tree_root, "")
    return "\n".join(lines)


def list_tree(root: Path | str, ignore: Sequence[str] = DEFAULT_IGNORE_PATTERNS) -> str:
    """Recursive directory tree for ``root``."""
    root_path = Path(root)
    directories, files = walk_directory(root_path, ignore)
    label = f"{root_path.resolve().name or root_path.as_posix()}/"
    return render_tree(label, directories, files)


def list_contents(root: Path | str, ignore: Sequence[str] = DEFAULT_IGNORE_PATTERNS) -> str:
    """Directory tree followed by the content of every text file."""
    root_path = Path(root)
    directories, files = walk_directory(root_path, ignore)
    label = f"{root_path.resolve().name or root_path.as_posix()}/"
    sections = [render_tree(label, directories, files)]
    for relative in files:
        try:
            data = (root_path / relative).read_bytes()
        except OSError as error:
            sections.append(f"### {relative}\n(unreadable: {error.strerror or error})")
            continue
        if looks_binary(data):
            sections.append(f"### {relative}\n(binary file, {len(data)} bytes)")
            continue
        text = data.decode("utf-8", errors="replace")
        fence = fence_for(text)
        body = text if text.endswith("\n") or not text else f"{text}\n"
        sections.append(f"### {relative}\n{fence}{detect_language(relative)}\n{body}{fence}")
    return "\n\n".join(sections) + "\n"
