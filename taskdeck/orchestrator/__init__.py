"""Session orchestration: inbound commands, outbound notifications and the single active task."""

from taskdeck.orchestrator.channel import (
    CallbackNotificationChannel,
    NotificationChannel,
    QueueNotificationChannel,
)
from taskdeck.orchestrator.export import export_task_markdown
from taskdeck.orchestrator.messages import (
    ActionKind,
    ActionMessage,
    CatalogMessage,
    InboundMessage,
    InboundType,
    LocalModelsMessage,
    OutboundMessage,
    SelectedImagesMessage,
    StateMessage,
    ThemeMessage,
)
from taskdeck.orchestrator.session import (
    HostActions,
    NullHostActions,
    SessionOrchestrator,
    active_instances,
    get_visible_instance,
)

__all__ = [
    "SessionOrchestrator",
    "HostActions",
    "NullHostActions",
    "active_instances",
    "get_visible_instance",
    "NotificationChannel",
    "QueueNotificationChannel",
    "CallbackNotificationChannel",
    "export_task_markdown",
    "ActionKind",
    "ActionMessage",
    "CatalogMessage",
    "InboundMessage",
    "InboundType",
    "LocalModelsMessage",
    "OutboundMessage",
    "SelectedImagesMessage",
    "StateMessage",
    "ThemeMessage",
]
