"""
Interactive chat loop.

Reads lines with prompt_toolkit and turns them into inbound commands:
plain text starts a task (or answers the executor's pending ask), slash
commands map onto the remaining orchestrator operations. Ctrl-C while a task
is active cancels it; Ctrl-C when idle (or Ctrl-D) leaves the loop.
"""

import logging
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console

from taskdeck.cli.console import ConsoleHost, ConsoleRenderer, history_table
from taskdeck.cli.prompt import SLASH_COMMANDS, parse_slash_command
from taskdeck.exceptions import TaskNotFoundError
from taskdeck.orchestrator.session import SessionOrchestrator

logger = logging.getLogger(__name__)

QUIT_COMMANDS = ("/quit", "/exit", "/q")
RETRY_WORDS = ("retry", "yes", "y")


def show_help(console: Console) -> None:
    for cmd, desc in SLASH_COMMANDS.items():
        console.print(f"  [cyan]{cmd:<10}[/cyan] {desc}")


async def send_text(
    orchestrator: SessionOrchestrator,
    renderer: ConsoleRenderer,
    host: ConsoleHost,
    text: str,
) -> None:
    """Answer the pending ask if a task is active, otherwise start a new task."""
    images = await host.select_images()
    if orchestrator.active_task_id is None:
        await orchestrator.handle_message({"type": "newTask", "text": text, "images": images})
        return

    if renderer.last_ask == "api_req_failed":
        kind = "yesButtonClicked" if text.lower() in RETRY_WORDS else "noButtonClicked"
        await orchestrator.handle_message({"type": "askResponse", "kind": kind})
        return

    await orchestrator.handle_message(
        {"type": "askResponse", "kind": "messageResponse", "text": text, "images": images}
    )


async def handle_slash_command(
    orchestrator: SessionOrchestrator,
    console: Console,
    host: ConsoleHost,
    line: str,
) -> bool:
    """
    Run one slash command.

    Returns:
        False if the loop should exit
    """
    command, argument = parse_slash_command(line)

    if command in QUIT_COMMANDS:
        return False
    if command == "/help":
        show_help(console)
    elif command == "/new":
        if not argument:
            console.print("[yellow]Usage: /new <task description>[/yellow]")
        else:
            images = await host.select_images()
            await orchestrator.handle_message({"type": "newTask", "text": argument, "images": images})
    elif command == "/cancel":
        await orchestrator.handle_message({"type": "cancelTask"})
    elif command == "/clear":
        await orchestrator.handle_message({"type": "clearTask"})
        console.print("[dim]Active task cleared[/dim]")
    elif command == "/history":
        console.print(history_table(orchestrator.get_state_snapshot()["taskHistory"]))
    elif command == "/resume":
        await orchestrator.handle_message({"type": "showTaskWithId", "id": argument})
    elif command == "/delete":
        await orchestrator.handle_message({"type": "deleteTaskWithId", "id": argument})
        console.print(f"[green]Deleted task {argument}[/green]")
    elif command == "/export":
        task_id = orchestrator.active_task_id
        if task_id is None:
            console.print("[yellow]No active task[/yellow]")
        else:
            path = await orchestrator.export_task(task_id)
            console.print(f"[green]Exported to[/green] {path}")
    elif command == "/image":
        path = Path(argument).expanduser()
        if not path.is_file():
            console.print(f"[red]No such file:[/red] {path}")
        else:
            host.attach_image(path)
            console.print(f"[dim]Attached {path.name}[/dim]")
    elif command == "/models":
        await orchestrator.handle_message({"type": "refreshCatalog"})
    else:
        console.print(f"[yellow]Unknown command: {command}. Type /help for commands.[/yellow]")
    return True


async def conversation_loop(
    orchestrator: SessionOrchestrator,
    renderer: ConsoleRenderer,
    host: ConsoleHost,
    session: PromptSession,
    console: Console,
    initial_prompt: str | None = None,
    resume_id: str | None = None,
) -> None:
    """Run the chat until the user quits."""
    await orchestrator.handle_message({"type": "launch"})

    try:
        if resume_id:
            await orchestrator.handle_message({"type": "showTaskWithId", "id": resume_id})
        elif initial_prompt:
            await orchestrator.handle_message({"type": "newTask", "text": initial_prompt})
    except TaskNotFoundError as e:
        console.print(f"[red]Task {e.task_id} not found[/red]")

    with patch_stdout():
        while True:
            try:
                line = await session.prompt_async("> ")
            except KeyboardInterrupt:
                if orchestrator.active_task_id is None:
                    break
                console.print("[yellow]Cancelling...[/yellow]")
                try:
                    await orchestrator.handle_message({"type": "cancelTask"})
                except TaskNotFoundError as e:
                    console.print(f"[red]Task {e.task_id} not found[/red]")
                continue
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue

            try:
                if line.startswith("/"):
                    if not await handle_slash_command(orchestrator, console, host, line):
                        break
                else:
                    await send_text(orchestrator, renderer, host, line)
            except TaskNotFoundError as e:
                console.print(f"[red]Task {e.task_id} not found[/red]")
