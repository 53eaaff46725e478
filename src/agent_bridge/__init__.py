"""
Agent Bridge - async agents, tool calling and notifications over multiple LLM providers.
"""

from ._exceptions import (
    AgentBuildError,
    AgentError,
    ApiError,
    ConfigurationError,
    DeserializationError,
    FlowRuntimeError,
    InferenceClientError,
    StreamProtocolError,
    StructuredOutputError,
    ToolExecutionError,
    TransportError,
    UnsupportedError,
)
from .agent import (
    Agent,
    AgentBuilder,
    ModelConfig,
    PromptConfig,
    SharedAgent,
    ToolProvider,
)
from .client import InferenceClient, create_provider_client
from .dispatch import call_tools
from .flows import Flow
from .invocation import InvocationBuilder
from .notifications import (
    Notification,
    NotificationContent,
    NotificationHub,
    NotificationReceiver,
    NotificationSender,
    channel,
)
from .prebuilds import StatefulPrebuild, StatelessPrebuild
from .provider import ClientConfig, Provider, get_api_key
from .templates import Template, TemplateDataSource
from .types import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    InferenceOptions,
    Message,
    Role,
    SchemaSpec,
    Tool,
    ToolBuilder,
    ToolCall,
    ToolCallFunction,
)

__version__ = "0.1.0"

__all__ = [
    "AgentBuildError",
    "AgentError",
    "ApiError",
    "ConfigurationError",
    "DeserializationError",
    "FlowRuntimeError",
    "InferenceClientError",
    "StreamProtocolError",
    "StructuredOutputError",
    "ToolExecutionError",
    "TransportError",
    "UnsupportedError",
    "Agent",
    "AgentBuilder",
    "ModelConfig",
    "PromptConfig",
    "SharedAgent",
    "ToolProvider",
    "InferenceClient",
    "create_provider_client",
    "call_tools",
    "Flow",
    "InvocationBuilder",
    "Notification",
    "NotificationContent",
    "NotificationHub",
    "NotificationReceiver",
    "NotificationSender",
    "channel",
    "StatefulPrebuild",
    "StatelessPrebuild",
    "ClientConfig",
    "Provider",
    "get_api_key",
    "Template",
    "TemplateDataSource",
    "ChatRequest",
    "ChatResponse",
    "ChatStreamChunk",
    "EmbeddingsRequest",
    "EmbeddingsResponse",
    "InferenceOptions",
    "Message",
    "Role",
    "SchemaSpec",
    "Tool",
    "ToolBuilder",
    "ToolCall",
    "ToolCallFunction",
]
