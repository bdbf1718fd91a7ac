"""Filesystem tooling shared by the context builder, applier, and CLI."""

from .fsutil import atomic_write, content_digest, looks_binary, read_bytes_or_none
from .listing import detect_language, fence_for, list_contents, list_tree, render_tree, walk_directory
from .paths import PathRejected, RootSet, normalize_relative_path
from .signatures import extract_signatures, list_signatures

__all__ = [
    "PathRejected",
    "RootSet",
    "atomic_write",
    "content_digest",
    "detect_language",
    "extract_signatures",
    "fence_for",
    "list_contents",
    "list_signatures",
    "list_tree",
    "looks_binary",
    "normalize_relative_path",
    "read_bytes_or_none",
    "render_tree",
    "walk_directory",
]
