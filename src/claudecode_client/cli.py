"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from claudecode_client import __version__
from claudecode_client.client import ClaudeClient
from claudecode_client.config import (
    CONFIG_FILE,
    AppConfig,
    load_config,
    save_config,
)
from claudecode_client.models import Command, StreamChunk
from claudecode_client.services.process import ProcessRunner
from claudecode_client.storage.database import close_db, get_recent_executions, init_db
from claudecode_client.utils.formatting import format_duration, format_result

app = typer.Typer(
    name="claudecode-client",
    help="Run the Claude Code CLI as a managed subprocess.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


def _setup_logging(config: AppConfig) -> None:
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.FileHandler(str(log_path))],
    )


def _parse_env(pairs: list[str] | None) -> dict[str, str] | None:
    if not pairs:
        return None
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            err_console.print(f"[red]Invalid --env value '{pair}'. Use KEY=VALUE.[/red]")
            raise typer.Exit(1)
        env[key] = value
    return env


async def _run_once(config: AppConfig, command: Command, stream: bool, summary: bool = False) -> int:
    async with ClaudeClient(config.client, storage=config.storage) as client:
        if stream:

            def on_chunk(chunk: StreamChunk) -> None:
                console.out(chunk.data, end="", highlight=False)

            result = await client.execute_stream(command, on_chunk)
        else:
            result = await client.execute(command)

    execution = result.data
    if not result.success or execution is None:
        err_console.print(f"[red]{type(result.error).__name__}: {result.error}[/red]")
        return 1

    if summary and not stream:
        console.print(format_result(execution, str(command)), highlight=False, markup=False)
        return execution.exit_code
    if not stream and execution.output:
        console.out(execution.output, end="", highlight=False)
    if execution.error:
        err_console.out(execution.error, end="", highlight=False)
    return execution.exit_code


@app.command()
def run(
    args: list[str] = typer.Argument(None, help="Arguments passed to the wrapped tool"),
    exe: str = typer.Option(None, "--exe", help="Executable (defaults to client.executable)"),
    cwd: str = typer.Option(None, "--cwd", help="Working directory"),
    timeout: int = typer.Option(None, "--timeout", "-t", help="Timeout in milliseconds"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Print output as it arrives"),
    summary: bool = typer.Option(False, "--summary", help="Print a status header with the output"),
    env: list[str] = typer.Option(None, "--env", "-e", help="Environment override KEY=VALUE"),
) -> None:
    """Execute the wrapped tool once."""
    config = load_config()
    _setup_logging(config)

    command = Command(
        exe or config.client.executable,
        tuple(args or ()),
        cwd=cwd,
        env=_parse_env(env),
        timeout=timeout,
    )
    exit_code = asyncio.run(_run_once(config, command, stream, summary))
    raise typer.Exit(exit_code)


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., client.default_timeout)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    cfg = load_config()
    section_map = {"client": cfg.client, "storage": cfg.storage, "logging": cfg.logging}

    if key is None:
        # Show all config
        table = Table(title="Configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        for section, obj in section_map.items():
            for attr, current in vars(obj).items():
                table.add_row(f"{section}.{attr}", str(current))

        console.print(table)
        if not CONFIG_FILE.exists():
            console.print(f"[dim]Defaults shown; no file at {CONFIG_FILE}[/dim]")
        return

    if value is None:
        console.print("[red]Usage: claudecode-client config <key> <value>[/red]")
        raise typer.Exit(1)

    # Set config value
    parts = key.split(".")
    if len(parts) != 2:
        console.print("[red]Key format: section.key (e.g., client.default_timeout)[/red]")
        raise typer.Exit(1)

    section, attr = parts
    if section not in section_map:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(1)

    obj = section_map[section]
    if not hasattr(obj, attr):
        console.print(f"[red]Unknown key: {key}[/red]")
        raise typer.Exit(1)

    # Type coercion
    current = getattr(obj, attr)
    try:
        if isinstance(current, bool):
            typed_value: object = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        else:
            typed_value = value
    except ValueError:
        console.print(f"[red]Invalid value type for {key}[/red]")
        raise typer.Exit(1)

    setattr(obj, attr, typed_value)
    save_config(cfg)
    console.print(f"[green]{key} = {typed_value}[/green]")


async def _load_history(db_path: str, limit: int, session: str | None) -> list[dict]:
    await init_db(db_path)
    try:
        return await get_recent_executions(limit=limit, session_id=session)
    finally:
        await close_db()


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of executions"),
    session: str = typer.Option(None, "--session", help="Only this session"),
) -> None:
    """View recent execution history."""
    cfg = load_config()
    if not cfg.storage.enabled:
        console.print("[yellow]History is disabled.[/yellow]")
        console.print("Enable it with [bold]claudecode-client config storage.enabled true[/bold]")
        return

    rows = asyncio.run(_load_history(cfg.storage.db_path, limit, session))
    if not rows:
        console.print("[dim]No executions recorded.[/dim]")
        return

    table = Table(title="Recent executions")
    table.add_column("When", style="dim")
    table.add_column("Session")
    table.add_column("Command", style="cyan")
    table.add_column("Status")
    table.add_column("Exit")
    table.add_column("Duration", justify="right")

    for row in rows:
        duration = row["duration_ms"]
        table.add_row(
            str(row["created_at"]),
            row["session_id"] or "-",
            row["command"],
            row["status"],
            "-" if row["exit_code"] is None else str(row["exit_code"]),
            "-" if duration is None else format_duration(duration),
        )
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"claudecode-client v{__version__}")

    cfg = load_config()
    runner = ProcessRunner(executable=cfg.client.executable, probe_timeout=cfg.client.probe_timeout)
    result = asyncio.run(runner.get_version())
    if result.success:
        console.print(f"Claude Code CLI: {result.data}")
    else:
        console.print("Claude Code CLI: [yellow]not installed[/yellow]")

    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
