"""CLI commands for inspecting projects and running AI edit sessions."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional

import typer

from . import prompts
from .config import ConfigError, EngineConfig, load_config
from .context_builder import ContextBuilder
from .errors import EditEngineError
from .models import LLMClient, LLMClientError, LLMRequest, ResponsesClient
from .session import run_edit_session
from .tools.listing import list_contents, list_tree
from .tools.signatures import list_signatures

APP_HELP = "AI toolkit: list, inspect, and edit projects with a language model."

app = typer.Typer(help=APP_HELP, no_args_is_help=True)

_CONFIG_HELP = "Path to an aitk.yaml configuration file."


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every sub-command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_engine_config(config_path: Optional[str]) -> EngineConfig:
    try:
        return load_config(config_path)
    except ConfigError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error


def _build_client(config: EngineConfig) -> LLMClient:
    """Create the Responses API client described by ``config``."""
    models_cfg = config.models
    try:
        return ResponsesClient(
            api_key=models_cfg.api_key,
            base_url=models_cfg.base_url,
            model=models_cfg.default,
            timeout=models_cfg.timeout,
            max_attempts=models_cfg.max_attempts,
            retry_delay=models_cfg.retry_delay,
        )
    except ValueError as error:
        typer.echo(f"Failed to initialise model client: {error}", err=True)
        raise typer.Exit(code=1) from error


def _valid_directories(directories: Optional[List[str]]) -> tuple[list[Path], bool]:
    """Split requested directories into valid paths; report the invalid ones."""
    valid: list[Path] = []
    all_valid = True
    for entry in directories or ["."]:
        path = Path(entry)
        if path.is_dir():
            valid.append(path)
        else:
            typer.echo(f'Error: "{entry}" is not a valid directory.', err=True)
            all_valid = False
    return valid, all_valid


def _print_listing(
    directories: Optional[List[str]],
    config_path: Optional[str],
    render: Callable[..., str],
) -> None:
    config = _load_engine_config(config_path)
    valid, all_valid = _valid_directories(directories)
    for directory in valid:
        typer.echo(render(directory, config.context.ignore).rstrip("\n"))
    if not all_valid:
        raise typer.Exit(code=1)


@app.command("ls")
def list_command(
    directories: Optional[List[str]] = typer.Argument(None, help="Directories to list (default: current)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Print the recursive file tree of each directory."""
    _print_listing(directories, config, list_tree)


@app.command("cat")
def cat_command(
    directories: Optional[List[str]] = typer.Argument(None, help="Directories to dump (default: current)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Print the file tree followed by the content of every text file."""
    _print_listing(directories, config, list_contents)


@app.command("types")
def types_command(
    directories: Optional[List[str]] = typer.Argument(None, help="Directories to scan (default: current)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Print class and function signatures of Python, TypeScript and JavaScript files."""
    _print_listing(directories, config, list_signatures)


@app.command()
def ask(
    question: List[str] = typer.Argument(..., help="Question to send to the model."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Ask the model a question and print its answer."""
    engine_config = _load_engine_config(config)
    client = _build_client(engine_config)
    try:
        answer = client.ask(" ".join(question), system_prompt=prompts.ASK_SYSTEM_PROMPT)
    except LLMClientError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(answer.strip())


@app.command()
def prompt(
    request: List[str] = typer.Argument(..., help="Change you want a prompt written for."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Ask the model to write a change-request prompt for the current directory."""
    engine_config = _load_engine_config(config)
    builder = ContextBuilder.from_config(engine_config)
    try:
        snapshot = builder.build([Path.cwd()])
    except EditEngineError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error

    client = _build_client(engine_config)
    user_prompt = "\n\n".join(
        [prompts.render_context(builder.render(snapshot)), f"## Goal\n{' '.join(request).strip()}"]
    )
    try:
        answer = client.invoke(
            LLMRequest(prompt=user_prompt, system_prompt=prompts.PROMPT_WRITER_SYSTEM_PROMPT)
        )
    except LLMClientError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(answer.strip())


@app.command()
def edit(
    instruction: List[str] = typer.Argument(..., help="What the model should change."),
    directories: Optional[List[str]] = typer.Option(
        None,
        "--dir",
        "-d",
        help="Project directory to edit (repeatable, default: current).",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate the plan without writing files."),
    retries: Optional[int] = typer.Option(
        None,
        "--retries",
        min=0,
        help="Retries allowed for unparseable model answers.",
    ),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Run one edit session and print its summary."""
    engine_config = _load_engine_config(config)
    if dry_run:
        engine_config.apply.dry_run = True
    if retries is not None:
        engine_config.session.max_retries = retries

    roots = list(directories or ["."])
    client = _build_client(engine_config)
    summary = asyncio.run(
        run_edit_session(roots, " ".join(instruction), client=client, config=engine_config)
    )
    typer.echo(summary.render())
    if not summary.committed:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    app()
