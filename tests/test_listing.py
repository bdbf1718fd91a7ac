from __future__ import annotations

import textwrap
from pathlib import Path

from aitk.tools.listing import fence_for, list_contents, list_tree, render_tree
from aitk.tools.signatures import extract_signatures, list_signatures


def test_list_tree_renders_box_drawing(sample_project) -> None:
    tree = list_tree(sample_project.root)

    assert tree == textwrap.dedent(
        """\
        src/
        ├── lib/
        │   └── util.js
        ├── README.md
        ├── a.ts
        └── main.py"""
    )


def test_render_tree_nests_directories() -> None:
    tree = render_tree(".", ["pkg", "pkg/sub"], ["pkg/sub/deep.py", "pkg/a.py", "z.txt"])

    assert tree.splitlines() == [
        ".",
        "├── pkg/",
        "│   ├── sub/",
        "│   │   └── deep.py",
        "│   └── a.py",
        "└── z.txt",
    ]


def test_list_contents_includes_fenced_files(sample_project) -> None:
    (sample_project.root / "blob.bin").write_bytes(b"\x00\x01\x02")

    output = list_contents(sample_project.root)

    assert output.startswith("src/\n")
    assert "### a.ts\n```typescript\nold\n```" in output
    assert "### lib/util.js\n```javascript\nexport function add(a, b) {" in output
    assert "### blob.bin\n(binary file, 3 bytes)" in output


def test_fence_grows_past_backtick_runs() -> None:
    assert fence_for("plain") == "```"
    assert fence_for("has ```` four") == "`````"


def test_python_signatures() -> None:
    source = textwrap.dedent(
        """
        import os


        class Store(Base):
            def get(self, key: str) -> bytes | None:
                return None

            async def close(self) -> None:
                pass


        def helper(*args, flag=False):
            return args
        """
    )

    assert extract_signatures("store.py", source) == [
        "class Store(Base)",
        "    def get(self, key: str) -> bytes | None",
        "    async def close(self) -> None",
        "def helper(*args, flag=False)",
    ]


def test_script_signatures() -> None:
    source = textwrap.dedent(
        """
        import { x } from "./x";

        export interface Options {
          verbose: boolean;
        }

        export type Id = string | number;

        export class Runner extends Base {
          run(): void {}
        }

        export async function main(args: string[]): Promise<void> {
          return;
        }

        export const double = (n: number): number => n * 2;
        """
    )

    assert extract_signatures("runner.ts", source) == [
        "export interface Options",
        "export type Id = string | number;",
        "export class Runner extends Base",
        "export async function main(args: string[]): Promise<void>",
        "export const double = (n: number): number =>",
    ]


def test_unsupported_and_invalid_sources_yield_nothing() -> None:
    assert extract_signatures("notes.md", "# heading") == []
    assert extract_signatures("broken.py", "def (:\n") == []


def test_list_signatures_groups_by_file(sample_project) -> None:
    output = list_signatures(sample_project.root)

    assert output == (
        "lib/util.js\n"
        "  export function add(a, b)\n"
        "\n"
        "main.py\n"
        "  def greet(name: str) -> str\n"
        "  class Greeter\n"
        "      def run(self) -> None\n"
    )


def test_list_signatures_empty_directory(tmp_path: Path) -> None:
    assert list_signatures(tmp_path) == ""


def test_list_contents_reports_unreadable_files(sample_project, monkeypatch) -> None:
    real_read_bytes = Path.read_bytes

    def guarded_read_bytes(self: Path) -> bytes:
        if self.name == "README.md":
            raise PermissionError(13, "Permission denied", str(self))
        return real_read_bytes(self)

    monkeypatch.setattr(Path, "read_bytes", guarded_read_bytes)

    output = list_contents(sample_project.root)

    assert "### README.md\n(unreadable: Permission denied)" in output
    assert "### a.ts\n```typescript\nold\n```" in output
