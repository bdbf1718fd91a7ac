"""Type and function signature summaries for Python and TypeScript/JavaScript."""

from __future__ import annotations

import ast
import re
from pathlib import Path
from typing import Sequence

from ..config import DEFAULT_IGNORE_PATTERNS
from .listing import walk_directory

__all__ = ["extract_signatures", "list_signatures"]

_PYTHON_SUFFIXES = {".py", ".pyi"}
_SCRIPT_SUFFIXES = {".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"}

_SCRIPT_PATTERNS = (
    re.compile(
        r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*[A-Za-z_$][\w$]*\s*(?:<[^>]*>)?\s*\([^)]*\)"
        r"(?:\s*:\s*[^{;]+)?"
    ),
    re.compile(
        r"^(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?class\s+[A-Za-z_$][\w$]*[^{]*"
    ),
    re.compile(r"^(?:export\s+)?(?:declare\s+)?interface\s+[A-Za-z_$][\w$]*[^{]*"),
    re.compile(r"^(?:export\s+)?(?:declare\s+)?type\s+[A-Za-z_$][\w$]*(?:<[^>]*>)?\s*=.*"),
    re.compile(r"^(?:export\s+)?(?:declare\s+)?(?:const\s+)?enum\s+[A-Za-z_$][\w$]*"),
    re.compile(
        r"^(?:export\s+)?(?:const|let|var)\s+[A-Za-z_$][\w$]*(?:\s*:\s*[^=]+)?\s*=\s*(?:async\s+)?"
        r"(?:\([^)]*\)|[A-Za-z_$][\w$]*)(?:\s*:\s*[^=]+)?\s*=>"
    ),
)


def _safe_unparse(node: ast.AST | None) -> str:
    if node is None:
        return ""
    try:
        return ast.unparse(node)
    except Exception:
        return ""


def _function_signature(node: ast.FunctionDef | ast.AsyncFunctionDef) -> str:
    prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
    signature = f"{prefix} {node.name}({_safe_unparse(node.args)})"
    returns = _safe_unparse(node.returns)
    if returns:
        signature = f"{signature} -> {returns}"
    return signature


def _class_signature(node: ast.ClassDef) -> str:
    bases = [text for text in (_safe_unparse(base) for base in node.bases) if text]
    if bases:
        return f"class {node.name}({', '.join(bases)})"
    return f"class {node.name}"


def _python_signatures(source: str) -> list[str]:
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return []
    lines: list[str] = []
    for node in tree.body:
        if isinstance(node, ast.ClassDef):
            lines.append(_class_signature(node))
            for member in node.body:
                if isinstance(member, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    lines.append(f"    {_function_signature(member)}")
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            lines.append(_function_signature(node))
    return lines


def _script_signatures(source: str) -> list[str]:
    lines: list[str] = []
    for raw in source.splitlines():
        # Only top-level declarations.
        if not raw or raw[0].isspace():
            continue
        for pattern in _SCRIPT_PATTERNS:
            match = pattern.match(raw)
            if match:
                lines.append(match.group(0).rstrip(" {").strip())
                break
    return lines


def extract_signatures(path: str, source: str) -> list[str]:
    """Return the declaration signatures found in ``source``."""
    suffix = Path(path).suffix.lower()
    if suffix in _PYTHON_SUFFIXES:
        return _python_signatures(source)
    if suffix in _SCRIPT_SUFFIXES:
        return _script_signatures(source)
    return []


def list_signatures(root: Path | str, ignore: Sequence[str] = DEFAULT_IGNORE_PATTERNS) -> str:
    """Per-file signature outline for every supported source file under ``root``."""
    root_path = Path(root)
    _, files = walk_directory(root_path, ignore)
    blocks: list[str] = []
    for relative in files:
        suffix = Path(relative).suffix.lower()
        if suffix not in _PYTHON_SUFFIXES | _SCRIPT_SUFFIXES:
            continue
        try:
            source = (root_path / relative).read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        signatures = extract_signatures(relative, source)
        if signatures:
            blocks.append(f"{relative}\n" + "\n".join(f"  {line}" for line in signatures))
    return "\n\n".join(blocks) + ("\n" if blocks else "")
