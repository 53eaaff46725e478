from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

from agent_bridge.notifications.channel import (
    ChannelClosedError,
    NotificationReceiver,
    NotificationSender,
)
from agent_bridge.notifications.notification import (
    Custom,
    Done,
    Notification,
    NotificationContent,
    PromptError,
    PromptRequest,
    PromptSuccess,
    ProviderEvent,
    Token,
    ToolCallError,
    ToolCallRequest,
    ToolCallSuccess,
)
from agent_bridge.types.chat import ChatRequest, ChatResponse
from agent_bridge.types.message import ToolCall

__all__ = ["NotificationHub"]

logger = logging.getLogger(__name__)


class NotificationHub:
    """
    An agent's outgoing notification sink.

    Without a sender every ``notify`` is a no-op returning False. Delivery
    failures are logged, never raised. Sub-agent streams are relayed into the
    sink by background tasks started with `forward` / `forward_many`; those
    tasks are tracked so `join` can await them and `aclose` can cancel them.
    """

    def __init__(self, name: str, sender: Optional[NotificationSender] = None) -> None:
        self.name = name
        self._sender = sender
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def sender(self) -> Optional[NotificationSender]:
        return self._sender

    def set_sender(self, sender: Optional[NotificationSender]) -> None:
        """Replace the sink; the previous sender is closed."""
        if self._sender is not None and self._sender is not sender:
            self._sender.close()
        self._sender = sender

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, f"[{self.name}] {message}")

    async def _deliver(self, notification: Notification) -> bool:
        if self._sender is None:
            return False
        try:
            await self._sender.send(notification)
        except ChannelClosedError as exc:
            self._log(f"Failed sending notification: {exc}", logging.WARNING)
            return False
        return True

    async def notify(self, content: NotificationContent) -> bool:
        """Send *content* stamped with this hub's name. True if it was delivered."""
        return await self._deliver(Notification(agent=self.name, content=content))

    async def notify_done(self, success: bool, response: Optional[str] = None) -> bool:
        return await self.notify(Done(success=success, response=response))

    async def notify_prompt_request(self, request: ChatRequest) -> bool:
        return await self.notify(PromptRequest(request=request))

    async def notify_prompt_success(self, response: ChatResponse) -> bool:
        return await self.notify(PromptSuccess(response=response))

    async def notify_prompt_error(self, error: str) -> bool:
        return await self.notify(PromptError(error=error))

    async def notify_tool_request(self, tool_call: ToolCall) -> bool:
        return await self.notify(ToolCallRequest(tool_call=tool_call))

    async def notify_tool_success(self, result: str) -> bool:
        return await self.notify(ToolCallSuccess(result=result))

    async def notify_tool_error(self, error: str) -> bool:
        return await self.notify(ToolCallError(error=error))

    async def notify_token(self, value: str, tag: Optional[str] = None) -> bool:
        return await self.notify(Token(value=value, tag=tag))

    async def notify_provider_event(self, payload: str) -> bool:
        return await self.notify(ProviderEvent(payload=payload))

    async def notify_custom(self, value: Any) -> bool:
        return await self.notify(Custom(value=value))

    # --- forwarding ---------------------------------------------------------
    def _track(self, coro: Any) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def forward(self, receiver: NotificationReceiver) -> Optional[asyncio.Task[None]]:
        """Relay *receiver* into this sink until it ends or the sink closes."""
        if self._sender is None:
            return None
        return self._track(self._relay(receiver))

    async def _relay(self, receiver: NotificationReceiver) -> None:
        try:
            async for notification in receiver:
                if not await self._deliver(notification.unwrap()):
                    break
        finally:
            receiver.close()

    def forward_many(
        self, receivers: Iterable[NotificationReceiver]
    ) -> Optional[asyncio.Task[None]]:
        """
        Merge several sources into this sink with a single relay task.

        Each source has at most one receive in flight, so per-source order is
        kept; sources are interleaved in arrival order. The relay ends when
        every source has ended or the sink has closed.
        """
        if self._sender is None:
            return None
        return self._track(self._relay_many(list(receivers)))

    async def _relay_many(self, receivers: list[NotificationReceiver]) -> None:
        pending: dict[asyncio.Future[Optional[Notification]], NotificationReceiver] = {
            asyncio.ensure_future(receiver.recv()): receiver for receiver in receivers
        }
        try:
            while pending:
                done, _ = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for fut in done:
                    receiver = pending.pop(fut)
                    notification = fut.result()
                    if notification is None:
                        continue
                    if not await self._deliver(notification.unwrap()):
                        return
                    pending[asyncio.ensure_future(receiver.recv())] = receiver
        finally:
            for fut in pending:
                fut.cancel()
            for receiver in receivers:
                receiver.close()

    async def join(self) -> None:
        """Wait for every forwarding task started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel forwarders and close the sender."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._sender is not None:
            self._sender.close()
