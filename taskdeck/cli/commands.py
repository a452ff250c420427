"""
TaskDeck CLI - Typer Commands

Every command builds the same stack the interactive chat uses
(AppConfig -> StateStore -> SessionOrchestrator) and drives it through the
orchestrator's public operations.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler

from taskdeck import __version__
from taskdeck.cli.console import ConsoleHost, ConsoleRenderer, catalog_table, history_table
from taskdeck.cli.interactive import conversation_loop
from taskdeck.cli.prompt import create_prompt_session
from taskdeck.config import API_CONFIG_SCHEMA, AppConfig, resolve_key
from taskdeck.exceptions import CatalogFetchError, TaskDeckError, TaskNotFoundError
from taskdeck.logging.viewer import format_entry_line, query_logs
from taskdeck.orchestrator.channel import CallbackNotificationChannel, QueueNotificationChannel
from taskdeck.orchestrator.session import SessionOrchestrator
from taskdeck.persistence.store import StateStore

logger = logging.getLogger(__name__)
console = Console()

T = TypeVar("T")

app = typer.Typer(
    name="taskdeck",
    help="Run and manage AI-assistant tasks: history, transcripts, model catalog and settings",
    add_completion=False,
    no_args_is_help=True,
)
config_app = typer.Typer(help="Read and write provider settings", no_args_is_help=True)
app.add_typer(config_app, name="config")

# Global-state keys that `config set` may write directly
SETTING_KEYS = {
    "custom_instructions": "update_custom_instructions",
    "always_allow_read_only": "set_always_allow_read_only",
    "is_debug_mode": "set_debug_mode",
}


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """TaskDeck - control plane for an AI coding assistant."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _create_orchestrator(channel: Any, host: Any = None) -> SessionOrchestrator:
    app_config = AppConfig.from_env()
    app_config.ensure_dirs()
    store = StateStore(app_config)
    return SessionOrchestrator(app_config, store, channel, host=host)


def _run(operation: Callable[[SessionOrchestrator], Awaitable[T]]) -> T:
    """Run one operation against a fresh orchestrator, closing it afterwards."""

    async def runner() -> T:
        async with _create_orchestrator(QueueNotificationChannel()) as orchestrator:
            return await operation(orchestrator)

    return asyncio.run(runner())


async def _snapshot(orchestrator: SessionOrchestrator) -> dict[str, Any]:
    return orchestrator.get_state_snapshot()


def _parse_value(raw: str) -> Any:
    """Interpret true/false and JSON objects; everything else stays a string."""
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if raw.startswith("{"):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            pass
    return raw


@app.command()
def version() -> None:
    """Show the TaskDeck version."""
    console.print(f"taskdeck {__version__}")


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most N tasks"),
) -> None:
    """List saved tasks, newest first."""
    snapshot = _run(_snapshot)
    items = snapshot["taskHistory"][:limit]
    if not items:
        console.print("[dim]No saved tasks[/dim]")
        return
    console.print(history_table(items))


@app.command()
def show(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Print a saved task's transcript."""

    async def operation(orchestrator: SessionOrchestrator) -> list[dict[str, Any]]:
        await orchestrator.get_task_with_id(task_id)
        return orchestrator.task_storage.load_ui_messages(task_id)

    try:
        messages = _run(operation)
    except TaskNotFoundError:
        console.print(f"[red]Task {task_id} not found[/red]")
        raise typer.Exit(1)

    renderer = ConsoleRenderer(console)
    for entry in messages:
        renderer.render_entry(entry)


@app.command()
def delete(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Delete a saved task and its transcript."""
    if _run(lambda o: o.delete_task(task_id)):
        console.print(f"[green]Deleted task {task_id}[/green]")
    else:
        console.print(f"[yellow]Task {task_id} was not in the history[/yellow]")


@app.command()
def export(task_id: str = typer.Argument(..., help="Task ID")) -> None:
    """Export a saved task to markdown."""
    try:
        path = _run(lambda o: o.export_task(task_id))
    except TaskNotFoundError:
        console.print(f"[red]Task {task_id} not found[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Exported to[/green] {path}")


@app.command()
def catalog(
    refresh: bool = typer.Option(False, "--refresh", "-r", help="Fetch the registry before listing"),
    search: str = typer.Option(None, "--search", "-s", help="Only models whose id contains this"),
) -> None:
    """List models from the cached registry catalog."""

    async def operation(orchestrator: SessionOrchestrator) -> Any:
        if refresh:
            return await orchestrator.catalog.refresh()
        return orchestrator.catalog.read()

    models = _run(operation)
    if not models:
        if refresh:
            console.print("[red]Catalog refresh failed; see `taskdeck logs --type catalog`[/red]")
            raise typer.Exit(1)
        console.print("[dim]No cached catalog. Run `taskdeck catalog --refresh`.[/dim]")
        return

    if search:
        models = {k: v for k, v in models.items() if search.lower() in k.lower()}
    console.print(catalog_table(models))


@app.command(name="local-models")
def local_models(
    base_url: str = typer.Option(None, "--base-url", "-u", help="Local registry URL"),
) -> None:
    """List models served by a local Ollama instance."""
    names = _run(lambda o: o.request_local_models(base_url))
    if not names:
        console.print("[dim]No local models found[/dim]")
        return
    for name in names:
        console.print(name)


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Clear all settings, stored API keys and the task history index."""
    if not yes and not typer.confirm("Clear all settings, API keys and task history?"):
        raise typer.Abort()
    _run(lambda o: o.reset_all())
    console.print("[green]State reset[/green]")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name (snake_case or camelCase)"),
    value: str = typer.Argument(..., help="Value; use '' to clear"),
) -> None:
    """Write one setting. API keys go to the system keychain."""
    entry = resolve_key(key)
    if entry is None or (entry.name not in API_CONFIG_SCHEMA and entry.name not in SETTING_KEYS):
        console.print(f"[red]Unknown setting:[/red] {key}")
        raise typer.Exit(1)

    parsed = _parse_value(value) if value != "" else None

    async def operation(orchestrator: SessionOrchestrator) -> None:
        if entry.name in SETTING_KEYS:
            await getattr(orchestrator, SETTING_KEYS[entry.name])(parsed)
        else:
            await orchestrator.update_configuration({entry.name: parsed})

    try:
        _run(operation)
    except TaskDeckError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Set {entry.wire_name}[/green]")


@config_app.command("show")
def config_show() -> None:
    """Show plain settings and which API keys are set."""
    snapshot = _run(_snapshot)
    for name, value in sorted(snapshot["apiConfiguration"].items()):
        console.print(f"[cyan]{name}[/cyan] = {value}")
    if snapshot.get("customInstructions"):
        console.print(f"[cyan]customInstructions[/cyan] = {snapshot['customInstructions']}")
    console.print(f"[cyan]alwaysAllowReadOnly[/cyan] = {snapshot['alwaysAllowReadOnly']}")
    secrets = ", ".join(snapshot["configuredSecrets"]) or "none"
    console.print(f"[dim]API keys set: {secrets}[/dim]")


@config_app.command("auth")
def config_auth(code: str = typer.Argument(..., help="Code returned by the registry OAuth flow")) -> None:
    """Exchange a registry OAuth code for an API key."""
    try:
        _run(lambda o: o.handle_registry_auth_callback(code))
    except CatalogFetchError as e:
        console.print(f"[red]Auth failed:[/red] {e.message}")
        raise typer.Exit(1)
    console.print("[green]Registry API key stored; provider set to openrouter[/green]")


@app.command()
def chat(
    prompt: str = typer.Argument(None, help="Start a new task with this text"),
    resume: str = typer.Option(None, "--resume", "-r", help="Resume a saved task by ID"),
) -> None:
    """Interactive chat. Ctrl-C cancels the running task; Ctrl-D exits."""
    renderer = ConsoleRenderer(console)
    host = ConsoleHost(console)

    async def run_session() -> None:
        orchestrator = _create_orchestrator(CallbackNotificationChannel(renderer), host=host)
        session = create_prompt_session(orchestrator.app_config.data_dir)
        async with orchestrator:
            orchestrator.set_visible(True)
            await conversation_loop(
                orchestrator,
                renderer,
                host,
                session,
                console,
                initial_prompt=prompt,
                resume_id=resume,
            )

    asyncio.run(run_session())


@app.command()
def logs(
    log_type: str = typer.Option("all", "--type", "-t", help="Log type: session, executor, catalog, all"),
    since: str = typer.Option(None, "--since", "-s", help="Time filter (ISO or relative: 1h, 30m, 2d)"),
    task: str = typer.Option(None, "--task", help="Filter by task ID"),
    tail: int = typer.Option(20, "--tail", "-n", help="Show last N entries"),
) -> None:
    """View TaskDeck structured logs."""
    try:
        entries = query_logs(log_type=log_type, since=since, task_id=task, limit=tail)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not entries:
        console.print("[dim]No log entries found[/dim]")
        return

    for entry in reversed(entries):
        line = format_entry_line(entry)
        if entry.get("error"):
            console.print(f"[red]{line}[/red]")
        elif entry.get("_source") == "session":
            console.print(f"[cyan]{line}[/cyan]")
        else:
            console.print(f"[dim]{line}[/dim]")


def run() -> None:
    """Entry point wrapper that invokes the Typer app."""
    app()
