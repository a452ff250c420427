"""
Markdown export of a task's api conversation history.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from taskdeck.exceptions import StorageError

logger = logging.getLogger(__name__)


def export_filename(ts: int) -> str:
    """File name for a task created at ``ts`` (ms epoch), e.g. ``taskdeck_task_oct-9-2024_2-05-33-pm.md``."""
    created = datetime.fromtimestamp(ts / 1000)
    month = created.strftime("%b").lower()
    hours = created.hour % 12 or 12
    ampm = "pm" if created.hour >= 12 else "am"
    return (
        f"taskdeck_task_{month}-{created.day}-{created.year}_"
        f"{hours}-{created.minute:02d}-{created.second:02d}-{ampm}.md"
    )


def format_content_block(block: Any) -> str:
    """Render one content block of an api turn."""
    if isinstance(block, str):
        return block
    if not isinstance(block, dict):
        return str(block)

    block_type = block.get("type")
    if block_type == "text":
        return block.get("text", "")
    if block_type in ("image", "image_url"):
        return "[Image]"
    if block_type == "tool_use":
        inputs = block.get("input") or {}
        params = "\n".join(f"{key}: {value}" for key, value in inputs.items())
        return f"[Tool Use: {block.get('name', '')}]\n{params}"
    if block_type == "tool_result":
        label = "[Tool (Error)]" if block.get("is_error") else "[Tool]"
        return f"{label}\n{format_content_block(block.get('content', ''))}"
    return f"[Unexpected content type: {block_type}]"


def format_conversation(api_history: list[dict[str, Any]]) -> str:
    sections = []
    for turn in api_history:
        role = "**User:**" if turn.get("role") == "user" else "**Assistant:**"
        content = turn.get("content", "")
        if isinstance(content, list):
            body = "\n".join(format_content_block(block) for block in content)
        else:
            body = format_content_block(content)
        sections.append(f"{role}\n\n{body}\n\n")
    return "---\n\n".join(sections)


def export_task_markdown(ts: int, api_history: list[dict[str, Any]], dest_dir: Path) -> Path:
    """
    Write the conversation as markdown.

    Args:
        ts: Task creation time (ms epoch), used for the file name
        api_history: Provider-format turns
        dest_dir: Destination directory (created if missing)

    Returns:
        Path of the written file
    """
    path = Path(dest_dir) / export_filename(ts)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(format_conversation(api_history), "utf-8")
    except OSError as e:
        raise StorageError(f"Failed to export task to {path}", {"error": str(e)}) from e
    logger.info("Exported task transcript to %s", path)
    return path
