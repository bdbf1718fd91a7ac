from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from aitk.models.llm_client import LLMClient, LLMTransportError  # noqa: E402


class ScriptedClient(LLMClient):
    """Client stub that replays canned answers and records every payload."""

    def __init__(self, responses: Iterable[str | Exception], *, max_attempts: int = 1) -> None:
        super().__init__(model="scripted", max_attempts=max_attempts, retry_delay=0.0)
        self._responses: List[str | Exception] = list(responses)
        self.payloads: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        if not self._responses:
            raise LLMTransportError("No scripted responses left.")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def user_prompt(self, index: int = -1) -> str:
        messages = self.payloads[index]["input"]
        return messages[-1]["content"][0]["text"]


@dataclass(slots=True)
class SampleProject:
    """Small on-disk project used by context, applier, and session tests."""

    root: Path
    files: Dict[str, str] = field(default_factory=dict)

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def state(self) -> Dict[str, bytes]:
        """Every file under the root mapped to its bytes."""
        return {
            path.relative_to(self.root).as_posix(): path.read_bytes()
            for path in sorted(self.root.rglob("*"))
            if path.is_file()
        }


@pytest.fixture()
def scripted_client():
    return ScriptedClient


@pytest.fixture()
def sample_project(tmp_path: Path) -> SampleProject:
    root = tmp_path / "src"
    root.mkdir()
    files = {
        "a.ts": "old",
        "main.py": textwrap.dedent(
            """
            def greet(name: str) -> str:
                return f"hello {name}"


            class Greeter:
                def run(self) -> None:
                    print(greet("world"))
            """
        ).lstrip(),
        "lib/util.js": "export function add(a, b) {\n  return a + b;\n}\n",
        "README.md": "# Sample\n",
    }
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return SampleProject(root=root, files=files)
