"""
TaskDeck CLI components.

Split into focused modules:
- commands.py: Typer entry points (history, show, delete, export, catalog, chat, ...)
- interactive.py: Chat loop driving a SessionOrchestrator
- console.py: Rich rendering of outbound notifications and terminal host actions
- prompt.py: prompt_toolkit session with history and slash-command completion
"""

from taskdeck.cli.commands import app, run

__all__ = ["app", "run"]
