"""
Chat prompt with command history and slash-command completion.

Uses prompt_toolkit to provide:
- Command history (arrow up/down), persisted under the data directory
- Tab completion for slash commands
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.history import FileHistory
from prompt_toolkit.styles import Style

if TYPE_CHECKING:
    from prompt_toolkit.document import Document


SLASH_COMMANDS = {
    "/help": "Show available commands",
    "/quit": "Exit the chat",
    "/exit": "Exit the chat",
    "/new": "Start a new task: /new <text>",
    "/cancel": "Cancel the running task and reload it",
    "/clear": "Drop the active task",
    "/history": "List saved tasks",
    "/resume": "Resume a saved task: /resume <id>",
    "/delete": "Delete a saved task: /delete <id>",
    "/export": "Export the active task to markdown",
    "/image": "Attach an image to the next message: /image <path>",
    "/models": "Refresh the model catalog",
}


class SlashCommandCompleter(Completer):
    """Completes slash commands at the start of the line."""

    def get_completions(self, document: Document, complete_event):
        text = document.text_before_cursor
        if not text.startswith("/") or " " in text:
            return
        for cmd, desc in SLASH_COMMANDS.items():
            if cmd.startswith(text):
                yield Completion(cmd, start_position=-len(text), display_meta=desc)


def get_history_path(data_dir: Path) -> Path:
    """Get path to the chat history file, creating the data directory."""
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "chat_history"


def create_prompt_session(data_dir: Path) -> PromptSession:
    """
    Create a prompt session with history and completion.

    Args:
        data_dir: Directory holding the history file

    Returns:
        Configured PromptSession
    """
    style = Style.from_dict(
        {
            "prompt": "ansicyan bold",
        }
    )

    session: PromptSession = PromptSession(
        history=FileHistory(str(get_history_path(data_dir))),
        auto_suggest=AutoSuggestFromHistory(),
        completer=SlashCommandCompleter(),
        complete_while_typing=False,  # Only complete on Tab
        style=style,
    )
    return session


def parse_slash_command(line: str) -> tuple[str, str]:
    """Split ``/cmd rest of line`` into (``/cmd``, ``rest of line``)."""
    command, _, argument = line.strip().partition(" ")
    return command.lower(), argument.strip()
