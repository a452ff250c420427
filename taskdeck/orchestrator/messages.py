"""
Orchestrator messages - inbound commands and outbound notifications.

Inbound messages arrive as dicts with a ``type`` tag and camelCase payload
fields. Outbound notifications are small dataclasses that serialize the same
way, so any presentation layer that can read JSON can render them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from taskdeck.catalog.models import ModelInfo, catalog_to_dict
from taskdeck.exceptions import MessageError


class InboundType(str, Enum):
    """Commands accepted by SessionOrchestrator.handle_message()."""

    LAUNCH = "launch"
    NEW_TASK = "newTask"
    UPDATE_CONFIGURATION = "updateConfiguration"
    UPDATE_CUSTOM_INSTRUCTIONS = "updateCustomInstructions"
    SET_ALWAYS_ALLOW_READ_ONLY = "setAlwaysAllowReadOnly"
    SET_DEBUG_MODE = "setDebugMode"
    ASK_RESPONSE = "askResponse"
    CLEAR_TASK = "clearTask"
    ANNOUNCEMENT_SHOWN = "announcementShown"
    SELECT_IMAGES = "selectImages"
    EXPORT_CURRENT_TASK = "exportCurrentTask"
    SHOW_TASK_WITH_ID = "showTaskWithId"
    DELETE_TASK_WITH_ID = "deleteTaskWithId"
    EXPORT_TASK_WITH_ID = "exportTaskWithId"
    RESET_STATE = "resetState"
    REQUEST_LOCAL_MODELS = "requestLocalModels"
    REFRESH_CATALOG = "refreshCatalog"
    OPEN_IMAGE = "openImage"
    OPEN_FILE = "openFile"
    OPEN_MENTION = "openMention"
    CANCEL_TASK = "cancelTask"


class ActionKind(str, Enum):
    """Navigation hints sent to the presentation layer."""

    BECAME_VISIBLE = "becameVisible"
    CHAT_BUTTON_CLICKED = "chatButtonClicked"
    SETTINGS_BUTTON_CLICKED = "settingsButtonClicked"
    HISTORY_BUTTON_CLICKED = "historyButtonClicked"


def _as_id(value: Any) -> str | None:
    """Task ids travel as strings; integer timestamps are accepted too."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise MessageError("Task id must be a string", {"id": repr(value)})


@dataclass
class InboundMessage:
    """A parsed inbound command. Fields not used by a command stay None."""

    type: str
    text: str | None = None
    images: list[str] = field(default_factory=list)
    bool_value: bool | None = None
    config: dict[str, Any] | None = None
    ask_kind: str | None = None
    task_id: str | None = None
    base_url: str | None = None
    path: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> InboundType | None:
        """The known command type, or None for types this host does not handle."""
        try:
            return InboundType(self.type)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: Any) -> "InboundMessage":
        """
        Parse an inbound message.

        Raises:
            MessageError: If ``data`` is not a dict or has no string ``type``
        """
        if not isinstance(data, dict):
            raise MessageError("Inbound message must be an object", {"received": type(data).__name__})
        msg_type = data.get("type")
        if not isinstance(msg_type, str) or not msg_type:
            raise MessageError("Inbound message has no type", {"keys": sorted(data.keys())})

        text = data.get("text")
        images = data.get("images") or []
        config = data.get("config", data.get("apiConfiguration"))
        return cls(
            type=msg_type,
            text=text,
            images=[str(i) for i in images] if isinstance(images, list) else [],
            bool_value=data.get("bool"),
            config=config if isinstance(config, dict) else None,
            ask_kind=data.get("kind", data.get("askResponse")),
            task_id=_as_id(data.get("id", text)),
            base_url=data.get("baseUrl", text),
            path=data.get("path", text),
            raw=data,
        )


@dataclass
class OutboundMessage:
    """Base for notifications posted to the channel."""

    type: ClassVar[str] = ""

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload()}


@dataclass
class StateMessage(OutboundMessage):
    type: ClassVar[str] = "stateSnapshot"
    state: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {"state": self.state}


@dataclass
class ActionMessage(OutboundMessage):
    type: ClassVar[str] = "action"
    action: ActionKind = ActionKind.CHAT_BUTTON_CLICKED

    def payload(self) -> dict[str, Any]:
        return {"action": self.action.value}


@dataclass
class CatalogMessage(OutboundMessage):
    type: ClassVar[str] = "catalog"
    models: dict[str, ModelInfo] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {"entries": catalog_to_dict(self.models)}


@dataclass
class LocalModelsMessage(OutboundMessage):
    type: ClassVar[str] = "localModels"
    names: list[str] = field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        return {"names": self.names}


@dataclass
class SelectedImagesMessage(OutboundMessage):
    type: ClassVar[str] = "selectedImages"
    paths: list[str] = field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        return {"paths": self.paths}


@dataclass
class ThemeMessage(OutboundMessage):
    type: ClassVar[str] = "themeChanged"
    theme: Any = None

    def payload(self) -> dict[str, Any]:
        return {"payload": self.theme}
