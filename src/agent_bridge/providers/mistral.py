from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from agent_bridge._exceptions import UnsupportedError
from agent_bridge.provider import ClientConfig
from agent_bridge.providers.base import BaseProviderClient
from agent_bridge.types.chat import ChatRequest, ChatResponse, ChatStreamChunk


class MistralClient(BaseProviderClient):
    """Declared so that ``Provider.MISTRAL`` resolves; not implemented yet."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        raise UnsupportedError("Mistral provider is not supported yet")

    async def chat(self, request: ChatRequest) -> ChatResponse:
        raise UnsupportedError("Mistral chat is not supported yet")

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        raise UnsupportedError("Mistral chat streaming is not supported yet")
