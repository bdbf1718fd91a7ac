"""Filesystem helpers: content hashing and crash-safe writes."""

from __future__ import annotations

import hashlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator

__all__ = [
    "BINARY_SNIFF_BYTES",
    "atomic_write",
    "content_digest",
    "file_mode",
    "looks_binary",
    "read_bytes_or_none",
]

BINARY_SNIFF_BYTES = 8192


def content_digest(data: bytes) -> str:
    """Return the sha256 hex digest used for staleness checks."""
    return hashlib.sha256(data).hexdigest()


def looks_binary(data: bytes) -> bool:
    """Treat payloads with a NUL byte near the start as binary."""
    return b"\x00" in data[:BINARY_SNIFF_BYTES]


def read_bytes_or_none(path: Path) -> bytes | None:
    """Read a regular file, returning ``None`` when it does not exist."""
    if not path.is_file():
        return None
    return path.read_bytes()


def file_mode(path: Path) -> int | None:
    try:
        return path.stat().st_mode & 0o7777
    except OSError:
        return None


@contextmanager
def _staged_file(target: Path) -> Iterator[tuple[BinaryIO, Path]]:
    """Open a temporary sibling of ``target``; it is removed unless promoted."""
    handle = tempfile.NamedTemporaryFile(
        "wb",
        dir=target.parent,
        prefix=f".{target.name}.",
        suffix=".aitk-tmp",
        delete=False,
    )
    temp_path = Path(handle.name)
    try:
        with handle:
            yield handle, temp_path
    finally:
        temp_path.unlink(missing_ok=True)


def atomic_write(target: Path, data: bytes, *, mode: int | None = None) -> None:
    """Write ``data`` to ``target`` via a temporary file and ``os.replace``.

    The original file is either left untouched or fully replaced. ``mode``
    defaults to the mode of the file being replaced.
    """
    if mode is None:
        mode = file_mode(target)
    with _staged_file(target) as (handle, temp_path):
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())
        handle.close()
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, target)
