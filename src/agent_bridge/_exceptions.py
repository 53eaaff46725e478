"""
Typed errors for the inference client, the tool layer and agents.

Noisy transport and SDK exceptions are translated into a small set of
`InferenceClientError` subclasses, while preserving the original exception as
``__cause__`` for full tracebacks.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Final, Optional, Type

__all__: tuple[str, ...] = (
    "InferenceClientError",
    "ConfigurationError",
    "TransportError",
    "ApiError",
    "DeserializationError",
    "StreamProtocolError",
    "UnsupportedError",
    "ToolExecutionError",
    "AgentBuildError",
    "AgentError",
    "FlowRuntimeError",
    "StructuredOutputError",
    "classify_error",
)


class InferenceClientError(RuntimeError):
    """Base class for every failure raised by the inference client."""


class ConfigurationError(InferenceClientError):
    """Missing credentials, invalid headers or an unknown provider."""


class TransportError(InferenceClientError):
    """The provider could not be reached."""


class ApiError(InferenceClientError):
    """Non-2xx response, or a 2xx response whose body is an error envelope.

    Attributes:
        status_code: HTTP status, when known.
        body: Raw response body kept for diagnosis.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DeserializationError(InferenceClientError):
    """A payload could not be decoded.

    Attributes:
        raw: The offending payload.
    """

    def __init__(self, message: str, *, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class StreamProtocolError(DeserializationError):
    """A streamed response ended without ever producing its terminal chunk."""


class UnsupportedError(InferenceClientError):
    """The provider is declared but does not implement this operation."""


class ToolExecutionError(Exception):
    """Raised by tool executors; recovered by the dispatcher into a Tool message."""

    ARGUMENT_PARSING: Final = "argument_parsing"
    EXECUTION_FAILED: Final = "execution_failed"
    NOT_FOUND: Final = "not_found"

    _PREFIXES: Final[dict[str, str]] = {
        ARGUMENT_PARSING: "Tool argument parsing error",
        EXECUTION_FAILED: "Tool execution failed",
        NOT_FOUND: "Tool not found",
    }

    def __init__(self, message: str, kind: str = EXECUTION_FAILED) -> None:
        super().__init__(message)
        self.kind = kind
        self.reason = message

    def __str__(self) -> str:
        return f"{self._PREFIXES.get(self.kind, 'Tool error')}: {self.reason}"

    @classmethod
    def argument_parsing(cls, message: str) -> "ToolExecutionError":
        return cls(message, cls.ARGUMENT_PARSING)

    @classmethod
    def execution_failed(cls, message: str) -> "ToolExecutionError":
        return cls(message, cls.EXECUTION_FAILED)

    @classmethod
    def not_found(cls, message: str) -> "ToolExecutionError":
        return cls(message, cls.NOT_FOUND)


class AgentBuildError(Exception):
    """An agent could not be constructed; no agent is produced."""


class AgentError(RuntimeError):
    """An invocation failed at the agent or flow level."""


class FlowRuntimeError(AgentError):
    """A flow could not continue (missing template, invalid plan, ...)."""


class StructuredOutputError(AgentError):
    """The model's reply does not parse into the requested output type.

    Attributes:
        raw: The reply text that failed to parse.
    """

    def __init__(self, message: str, *, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


def _import_exception(path: str) -> Type[BaseException]:
    """Dynamically import an exception type, falling back to a never-raised type."""
    module_name, _, attr = path.rpartition(".")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError):
        return _NeverRaised


class _NeverRaised(Exception):
    pass


HTTPX_STATUS_ERROR: Final = _import_exception("httpx.HTTPStatusError")
HTTPX_TRANSPORT_ERROR: Final = _import_exception("httpx.TransportError")

OpenAI_APIStatusError: Final = _import_exception("openai.APIStatusError")
OpenAI_APIConnectionError: Final = _import_exception("openai.APIConnectionError")
OpenAI_APIError: Final = _import_exception("openai.APIError")

Anthropic_APIStatusError: Final = _import_exception("anthropic.APIStatusError")
Anthropic_APIConnectionError: Final = _import_exception("anthropic.APIConnectionError")
Anthropic_APIError: Final = _import_exception("anthropic.APIError")

STATUS_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    OpenAI_APIStatusError,
    Anthropic_APIStatusError,
)

CONN_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    HTTPX_TRANSPORT_ERROR,
    OpenAI_APIConnectionError,
    Anthropic_APIConnectionError,
    TimeoutError,
    ConnectionError,
)

API_ERRORS: Final[tuple[Type[BaseException], ...]] = (
    OpenAI_APIError,
    Anthropic_APIError,
)


def classify_error(
    exc: BaseException,
    logger: Optional[logging.Logger] = None,
) -> InferenceClientError:
    """Wrap a transport or SDK exception in the matching `InferenceClientError`."""
    log = logger or logging.getLogger("agent_bridge.exceptions")

    if isinstance(exc, InferenceClientError):
        return exc

    wrapped: InferenceClientError
    if isinstance(exc, HTTPX_STATUS_ERROR):
        response = exc.response
        wrapped = ApiError(
            f"Request failed: {response.status_code} - {response.text}",
            status_code=response.status_code,
            body=response.text,
        )
    elif isinstance(exc, STATUS_ERRORS):
        status = getattr(exc, "status_code", None)
        wrapped = ApiError(
            f"Provider reported an error ({status}): {exc}",
            status_code=status,
            body=getattr(exc, "body", None),
        )
    elif isinstance(exc, CONN_ERRORS):
        wrapped = TransportError(
            f"Connection problem – unable to reach the LLM provider: {exc}"
        )
    elif isinstance(exc, API_ERRORS):
        wrapped = ApiError(
            f"Provider reported an internal error: {exc}",
            body=getattr(exc, "body", None),
        )
    else:
        wrapped = InferenceClientError(f"{exc.__class__.__name__}: {exc}")

    log.warning("Wrapping provider exception: %s", wrapped)
    wrapped.__cause__ = exc
    return wrapped
