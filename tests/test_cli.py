from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from aitk import cli
from aitk.parser import render_edit_plan
from aitk.prompts import ASK_SYSTEM_PROMPT, PROMPT_WRITER_SYSTEM_PROMPT
from aitk.structured import ReplaceRegion

runner = CliRunner()


@pytest.fixture()
def install_client(monkeypatch, scripted_client):
    def install(*responses):
        client = scripted_client(list(responses))
        monkeypatch.setattr(cli, "_build_client", lambda config: client)
        return client

    return install


def test_ls_prints_tree(sample_project) -> None:
    result = runner.invoke(cli.app, ["ls", str(sample_project.root)])

    assert result.exit_code == 0
    assert "src/\n├── lib/\n│   └── util.js" in result.output


def test_ls_reports_invalid_directory(sample_project, tmp_path: Path) -> None:
    missing = tmp_path / "missing"

    result = runner.invoke(cli.app, ["ls", str(missing), str(sample_project.root)])

    assert result.exit_code == 1
    assert f'Error: "{missing}" is not a valid directory.' in result.output
    assert "└── main.py" in result.output


def test_cat_prints_contents(sample_project) -> None:
    result = runner.invoke(cli.app, ["cat", str(sample_project.root)])

    assert result.exit_code == 0
    assert "### a.ts\n```typescript\nold\n```" in result.output


def test_types_prints_signatures(sample_project) -> None:
    result = runner.invoke(cli.app, ["types", str(sample_project.root)])

    assert result.exit_code == 0
    assert "main.py\n  def greet(name: str) -> str" in result.output
    assert "export function add(a, b)" in result.output


def test_ask_prints_answer(install_client) -> None:
    client = install_client("I am a stub.\n")

    result = runner.invoke(cli.app, ["ask", "Who", "are", "you?"])

    assert result.exit_code == 0
    assert result.output.strip() == "I am a stub."
    messages = client.payloads[0]["input"]
    assert messages[0]["content"][0]["text"] == ASK_SYSTEM_PROMPT
    assert client.user_prompt() == "Who are you?"


def test_ask_reports_model_failure(install_client) -> None:
    install_client()

    result = runner.invoke(cli.app, ["ask", "hello"])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_prompt_uses_current_directory_context(sample_project, install_client, monkeypatch) -> None:
    client = install_client("Edit a.ts so it prints hello.")
    monkeypatch.chdir(sample_project.root)

    result = runner.invoke(cli.app, ["prompt", "Say", "hello"])

    assert result.exit_code == 0
    assert "Edit a.ts so it prints hello." in result.output
    assert client.payloads[0]["input"][0]["content"][0]["text"] == PROMPT_WRITER_SYSTEM_PROMPT
    user_prompt = client.user_prompt()
    assert "### a.ts" in user_prompt
    assert user_prompt.endswith("## Goal\nSay hello")


def test_edit_commits_changes(sample_project, install_client) -> None:
    install_client(render_edit_plan([ReplaceRegion(path="a.ts", match_text="old", new_text="new")]))

    result = runner.invoke(cli.app, ["edit", "Replace", "old", "--dir", str(sample_project.root)])

    assert result.exit_code == 0, result.output
    assert "Committed: 0 created, 1 replaced, 0 deleted, 0 renamed." in result.output
    assert sample_project.read("a.ts") == "new"


def test_edit_dry_run_does_not_write(sample_project, install_client) -> None:
    install_client(render_edit_plan([ReplaceRegion(path="a.ts", match_text="old", new_text="new")]))

    result = runner.invoke(cli.app, ["edit", "x", "--dir", str(sample_project.root), "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "Dry run, nothing written" in result.output
    assert "[applied] replace_region a.ts" in result.output
    assert sample_project.read("a.ts") == "old"


def test_edit_aborts_after_retries(sample_project, install_client) -> None:
    client = install_client("not a plan", "still not a plan")

    result = runner.invoke(
        cli.app, ["edit", "x", "--dir", str(sample_project.root), "--retries", "0"]
    )

    assert result.exit_code == 1
    assert "Aborted: response contains no operation blocks" in result.output
    assert len(client.payloads) == 1


def test_edit_rejects_missing_config(sample_project, tmp_path: Path) -> None:
    result = runner.invoke(
        cli.app,
        ["edit", "x", "--dir", str(sample_project.root), "--config", str(tmp_path / "nope.yaml")],
    )

    assert result.exit_code == 1
    assert "Config file not found" in result.output
