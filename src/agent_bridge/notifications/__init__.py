from .notification import (
    Custom,
    Done,
    Notification,
    NotificationContent,
    NotificationType,
    ProgressEnvelope,
    PromptError,
    PromptRequest,
    PromptSuccess,
    ProviderEvent,
    Token,
    ToolCallError,
    ToolCallRequest,
    ToolCallSuccess,
)
from .channel import (
    DEFAULT_CHANNEL_SIZE,
    ChannelClosedError,
    NotificationReceiver,
    NotificationSender,
    channel,
)
from .hub import NotificationHub

__all__ = [
    "Custom",
    "Done",
    "Notification",
    "NotificationContent",
    "NotificationType",
    "ProgressEnvelope",
    "PromptError",
    "PromptRequest",
    "PromptSuccess",
    "ProviderEvent",
    "Token",
    "ToolCallError",
    "ToolCallRequest",
    "ToolCallSuccess",
    "DEFAULT_CHANNEL_SIZE",
    "ChannelClosedError",
    "NotificationReceiver",
    "NotificationSender",
    "channel",
    "NotificationHub",
]
