"""
Console presentation layer.

ConsoleRenderer turns outbound notifications into rich output; ConsoleHost
implements the host actions a terminal can offer.
"""

import base64
import json
import logging
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from taskdeck.catalog.models import ModelInfo
from taskdeck.catalog.pricing import format_cost
from taskdeck.orchestrator.messages import (
    ActionMessage,
    CatalogMessage,
    LocalModelsMessage,
    OutboundMessage,
    SelectedImagesMessage,
    StateMessage,
    ThemeMessage,
)

logger = logging.getLogger(__name__)


def format_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000).strftime("%Y-%m-%d %H:%M")


def history_table(items: list[dict[str, Any]]) -> Table:
    """Task history rows as shown by ``taskdeck history`` and ``/history``."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Created", style="dim", width=16)
    table.add_column("Task")
    table.add_column("Tokens", style="yellow", justify="right")
    table.add_column("Cost", style="green", justify="right")
    for item in items:
        task = item.get("task", "")
        table.add_row(
            item.get("id", ""),
            format_ts(item.get("ts", 0)),
            task if len(task) <= 60 else task[:57] + "...",
            f"{item.get('tokensIn', 0)}/{item.get('tokensOut', 0)}",
            format_cost(item.get("totalCost", 0.0) or 0.0),
        )
    return table


def catalog_table(models: dict[str, ModelInfo]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Model", style="cyan")
    table.add_column("Context", justify="right")
    table.add_column("In $/M", justify="right")
    table.add_column("Out $/M", justify="right")
    table.add_column("Cache W/R $/M", justify="right", style="dim")
    table.add_column("Images", justify="center")

    def price(value: float | None) -> str:
        return f"{value:.2f}" if value is not None else "-"

    for model_id in sorted(models):
        info = models[model_id]
        cache = (
            f"{price(info.cache_writes_price)}/{price(info.cache_reads_price)}"
            if info.supports_prompt_cache
            else "-"
        )
        table.add_row(
            model_id,
            str(info.context_window or "-"),
            price(info.input_price),
            price(info.output_price),
            cache,
            "yes" if info.supports_images else "",
        )
    return table


class ConsoleRenderer:
    """
    Renders outbound notifications.

    State snapshots carry the full ui transcript, so the renderer remembers
    how much of the active task it has already printed and only prints the
    tail.
    """

    def __init__(self, console: Console):
        self.console = console
        self.last_ask: str | None = None
        self._task_key: str | None = None
        self._printed = 0

    def __call__(self, message: OutboundMessage) -> None:
        self.render(message)

    def render(self, message: OutboundMessage) -> None:
        if isinstance(message, StateMessage):
            self._render_state(message.state)
        elif isinstance(message, CatalogMessage):
            if message.models:
                self.console.print(f"[dim]Model catalog updated: {len(message.models)} models[/dim]")
            else:
                self.console.print("[yellow]Model catalog refresh returned no models[/yellow]")
        elif isinstance(message, LocalModelsMessage):
            names = ", ".join(message.names) or "none"
            self.console.print(f"[dim]Local models: {names}[/dim]")
        elif isinstance(message, SelectedImagesMessage):
            self.console.print(f"[dim]{len(message.paths)} image(s) attached[/dim]")
        elif isinstance(message, ActionMessage):
            logger.debug("Action: %s", message.action.value)
        elif isinstance(message, ThemeMessage):
            logger.debug("Theme changed")

    def _render_state(self, state: dict[str, Any]) -> None:
        messages = state.get("messages") or []
        key = str(messages[0].get("ts")) if messages else None
        if key != self._task_key:
            self._task_key = key
            self._printed = 0
            self.last_ask = None

        for entry in messages[self._printed :]:
            self.render_entry(entry)
        self._printed = len(messages)

    def render_entry(self, entry: dict[str, Any]) -> None:
        text = entry.get("text") or ""
        if entry.get("type") == "ask":
            self.last_ask = entry.get("ask")
            if self.last_ask == "api_req_failed":
                self.console.print("[yellow]Request failed. Type 'retry' to try again or anything else to stop.[/yellow]")
            elif self.last_ask == "resume_task":
                self.console.print("[dim]Task loaded. Reply to continue it.[/dim]")
            return

        self.last_ask = None
        say = entry.get("say")
        if say == "text" and text:
            self.console.print(Markdown(text))
        elif say == "user_feedback":
            self.console.print(f"[bold cyan]you:[/bold cyan] {text}")
        elif say == "api_req_started":
            try:
                info = json.loads(text)
            except json.JSONDecodeError:
                return
            if "cost" in info:
                self.console.print(
                    f"[dim]tokens {info.get('tokensIn', 0)} in / {info.get('tokensOut', 0)} out, "
                    f"{format_cost(info.get('cost', 0.0))}[/dim]"
                )
        elif say == "error":
            self.console.print(Panel(text, title="Error", border_style="red"))
        elif say == "completion_result":
            self.console.print("[green]Task complete.[/green]")


class ConsoleHost:
    """Host actions available in a terminal."""

    def __init__(self, console: Console):
        self.console = console
        self.pending_images: list[Path] = []

    def attach_image(self, path: Path) -> None:
        self.pending_images.append(path)

    async def select_images(self) -> list[str]:
        """Return pending attachments as data URLs and clear them."""
        urls: list[str] = []
        for path in self.pending_images:
            mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
            try:
                data = base64.b64encode(path.read_bytes()).decode("ascii")
            except OSError as e:
                self.console.print(f"[red]Cannot read image {path}:[/red] {e}")
                continue
            urls.append(f"data:{mime_type};base64,{data}")
        self.pending_images = []
        return urls

    async def open_image(self, path: str) -> None:
        typer.launch(path)

    async def open_file(self, path: str) -> None:
        typer.launch(path)

    async def open_mention(self, text: str | None) -> None:
        if text:
            self.console.print(f"[dim]{text}[/dim]")

    def get_theme(self) -> Any:
        return None
