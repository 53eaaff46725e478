from .message import Message, Role, ToolCall, ToolCallFunction
from .tool import AsyncToolFn, FunctionParameters, Property, Tool, ToolBuilder
from .chat import (
    DEFAULT_KEEP_ALIVE,
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    InferenceOptions,
    SchemaSpec,
)

__all__ = [
    "Message",
    "Role",
    "ToolCall",
    "ToolCallFunction",
    "AsyncToolFn",
    "FunctionParameters",
    "Property",
    "Tool",
    "ToolBuilder",
    "DEFAULT_KEEP_ALIVE",
    "ChatRequest",
    "ChatResponse",
    "ChatStreamChunk",
    "EmbeddingsRequest",
    "EmbeddingsResponse",
    "InferenceOptions",
    "SchemaSpec",
]
