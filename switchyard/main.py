"""Command-line entry point for Switchyard."""

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from switchyard import __version__
from switchyard.checkpoints import CheckpointManager
from switchyard.config import Config, set_config
from switchyard.engine import Engine, EngineResult, ProcessOptions
from switchyard.exceptions import ConfigurationError, SwitchyardError
from switchyard.interaction import ConsoleInteraction
from switchyard.logging import configure_logging, log
from switchyard.permissions import MODE_CYCLE, PermissionManager
from switchyard.storage import Database

app = typer.Typer(help="Switchyard - a multi-provider coding assistant for the terminal")
console = Console()

HELP_TEXT = """\
/help                 Show this help
/new                  Start a new conversation
/providers            Show backends and their health
/switch <name>        Make a backend current
/permission [mode]    Show or set the permission mode
/cycle                Cycle default -> auto-edit -> plan-only
/checkpoints          List recent checkpoints
/revert <id>          Restore a file from a checkpoint
/exit                 Quit"""


def _load_config(config_path: str, verbose: bool) -> Config:
    try:
        cfg = Config.from_yaml(Path(config_path)) if config_path else Config.load()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    if verbose:
        cfg.logging.level = "DEBUG"
    set_config(cfg)
    configure_logging(cfg)
    return cfg


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except SwitchyardError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def _tool_output(tool_name: str, arguments: dict[str, Any], output: str) -> None:
    target = arguments.get("path") or arguments.get("command") or ""
    first_line = output.splitlines()[0] if output else ""
    console.print(f"[dim]  {tool_name} {target}: {first_line[:120]}[/dim]")


def _render_result(result: EngineResult) -> None:
    console.print(Markdown(result.content or "_(empty response)_"))
    console.print(
        f"[dim]{result.provider}/{result.model} · {result.usage.get('total_tokens', 0)} tokens"
        f" · {result.tool_rounds} tool rounds[/dim]"
    )


def _providers_table(engine: Engine) -> Table:
    table = Table(title="Providers", show_header=True, header_style="bold cyan")
    table.add_column("Rank", justify="right")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Healthy")
    table.add_column("Current", justify="center")
    for status in engine.orchestrator.provider_status():
        table.add_row(
            str(status["rank"] + 1),
            status["name"],
            status["model"],
            "yes" if status["healthy"] else "no",
            "*" if status["current"] else "",
        )
    return table


async def _checkpoints_table(checkpoints: CheckpointManager, limit: int) -> Table:
    table = Table(title="Checkpoints", show_header=True, header_style="bold cyan")
    table.add_column("ID", overflow="fold")
    table.add_column("File", overflow="fold")
    table.add_column("Existed")
    table.add_column("Age", justify="right")
    for item in await checkpoints.list_checkpoints(limit):
        table.add_row(item.id, item.file_path, "yes" if item.file_existed else "no", item.age)
    return table


async def handle_slash_command(engine: Engine, line: str) -> bool:
    """Run a slash command. Returns False when the session should end."""
    parts = line.strip().split()
    command, args = parts[0].lower(), parts[1:]

    if command in ("/exit", "/quit"):
        return False
    if command == "/help":
        console.print(Panel(HELP_TEXT, title="Commands", border_style="cyan"))
    elif command == "/new":
        conversation_id = await engine.new_conversation()
        console.print(f"[green]New conversation[/green] {conversation_id}")
    elif command == "/providers":
        console.print(_providers_table(engine))
    elif command == "/switch":
        if not args:
            console.print("[yellow]Usage: /switch <provider>[/yellow]")
        else:
            engine.switch_provider(args[0])
            console.print(f"[green]Switched to[/green] {engine.orchestrator.current_provider_name}")
    elif command == "/permission":
        if args:
            await engine.permissions.set_mode(args[0])
        console.print(f"Permission mode: {engine.permissions.mode_display()}")
    elif command == "/cycle":
        await engine.permissions.cycle_mode()
        console.print(f"Permission mode: {engine.permissions.mode_display()}")
    elif command == "/checkpoints":
        if engine.checkpoints is not None:
            console.print(await _checkpoints_table(engine.checkpoints, 10))
    elif command == "/revert":
        if not args or engine.checkpoints is None:
            console.print("[yellow]Usage: /revert <checkpoint-id>[/yellow]")
        else:
            record = await engine.checkpoints.revert_to_checkpoint(args[0])
            console.print(f"[green]Reverted[/green] {record.file_path}")
    else:
        console.print(f"[yellow]Unknown command: {command}[/yellow] (try /help)")
    return True


async def run_chat(config: Config) -> None:
    """Run the interactive session."""
    engine = Engine.from_config(config, interaction=ConsoleInteraction(console), tool_output_callback=_tool_output)
    await engine.initialize()
    console.print(
        Panel(
            f"[bold cyan]Switchyard {__version__}[/bold cyan]\n"
            f"Provider: {engine.orchestrator.current_provider_name} · "
            f"Mode: {engine.permissions.mode.value} · /help for commands",
            border_style="cyan",
        )
    )
    try:
        while True:
            try:
                line = (await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line.startswith("/"):
                try:
                    if not await handle_slash_command(engine, line):
                        break
                except SwitchyardError as e:
                    console.print(f"[red]Error:[/red] {e}")
                continue
            try:
                result = await engine.process_request(line)
            except SwitchyardError as e:
                console.print(f"[red]Error:[/red] {e}")
                continue
            _render_result(result)
    finally:
        await engine.shutdown()


async def run_ask(config: Config, message: str, mode: str | None) -> None:
    engine = Engine.from_config(config, interaction=ConsoleInteraction(console), tool_output_callback=_tool_output)
    await engine.initialize()
    try:
        result = await engine.process_request(message, ProcessOptions(mode=mode))
        _render_result(result)
    finally:
        await engine.shutdown()


async def run_providers(config: Config) -> None:
    engine = Engine.from_config(config)
    await engine.initialize()
    try:
        await engine.orchestrator.check_health()
        console.print(_providers_table(engine))
    finally:
        await engine.shutdown()


async def _with_checkpoints(config: Config, action: str, arg: Any = None) -> None:
    database = Database(config.storage.db_path)
    checkpoints = CheckpointManager(database)
    try:
        if action == "list":
            console.print(await _checkpoints_table(checkpoints, arg))
        elif action == "revert":
            record = await checkpoints.revert_to_checkpoint(arg)
            state = "restored" if record.file_existed else "removed"
            console.print(f"[green]Reverted[/green] {record.file_path} ({state})")
        elif action == "prune":
            deleted = await checkpoints.clear_old_checkpoints()
            console.print(f"Deleted {deleted} checkpoint(s) older than 24h")
    finally:
        await database.close()


async def run_permission(config: Config, mode: str | None) -> None:
    database = Database(config.storage.db_path)
    permissions = PermissionManager(config.permissions.mode, database)
    try:
        await permissions.load()
        if mode:
            await permissions.set_mode(mode)
        console.print(f"Permission mode: {permissions.mode_display()}")
        if not mode:
            console.print(f"[dim]Available: {', '.join(m.value for m in MODE_CYCLE)}[/dim]")
    finally:
        await database.close()


ConfigOption = typer.Option("", "-c", "--config", help="Path to config file")
VerboseOption = typer.Option(False, "-v", "--verbose", help="Debug logging")


@app.command()
def chat(config: str = ConfigOption, verbose: bool = VerboseOption) -> None:
    """Start an interactive session."""
    cfg = _load_config(config, verbose)
    _run(run_chat(cfg))


@app.command()
def ask(
    message: str = typer.Argument(..., help="Request to send"),
    mode: str = typer.Option("", "--mode", help="Permission mode for this request"),
    config: str = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Send one request and print the answer."""
    cfg = _load_config(config, verbose)
    _run(run_ask(cfg, message, mode or None))


@app.command()
def providers(config: str = ConfigOption, verbose: bool = VerboseOption) -> None:
    """Initialize backends, probe their health and list them."""
    cfg = _load_config(config, verbose)
    _run(run_providers(cfg))


@app.command()
def checkpoints(
    limit: int = typer.Option(10, "--limit", "-n", help="How many to show"),
    config: str = ConfigOption,
) -> None:
    """List recent checkpoints."""
    cfg = _load_config(config, False)
    _run(_with_checkpoints(cfg, "list", limit))


@app.command()
def revert(
    checkpoint_id: str = typer.Argument(..., help="Checkpoint id"),
    config: str = ConfigOption,
) -> None:
    """Restore a file to a checkpoint."""
    cfg = _load_config(config, False)
    _run(_with_checkpoints(cfg, "revert", checkpoint_id))


@app.command("prune-checkpoints")
def prune_checkpoints(config: str = ConfigOption) -> None:
    """Delete checkpoints older than 24 hours."""
    cfg = _load_config(config, False)
    _run(_with_checkpoints(cfg, "prune"))


@app.command()
def permission(
    mode: str = typer.Argument("", help="default, auto-edit or plan-only"),
    config: str = ConfigOption,
) -> None:
    """Show or set the persisted permission mode."""
    cfg = _load_config(config, False)
    _run(run_permission(cfg, mode or None))


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Switchyard v{__version__}")


if __name__ == "__main__":
    app()
