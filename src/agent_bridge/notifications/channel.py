"""Bounded multi-producer, single-consumer notification channel for asyncio."""
from __future__ import annotations

import asyncio
from collections import deque
from typing import AsyncIterator, Optional

from agent_bridge.notifications.notification import Notification

__all__ = [
    "DEFAULT_CHANNEL_SIZE",
    "ChannelClosedError",
    "NotificationSender",
    "NotificationReceiver",
    "channel",
]

DEFAULT_CHANNEL_SIZE = 100


class ChannelClosedError(RuntimeError):
    """The receiving end is gone (or this sender was closed)."""


class _ChannelState:
    def __init__(self, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self.buffer: deque[Notification] = deque()
        self.senders = 0
        self.receiver_closed = False
        self._waiters: list[asyncio.Future[None]] = []

    async def wait_for_change(self) -> None:
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        await fut

    def wake(self) -> None:
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)


class NotificationSender:
    """
    Sending half. ``send`` waits while the buffer is full and raises
    `ChannelClosedError` as soon as the receiver has been closed.

    Senders are cloned, not shared: the receiver's stream ends once every
    clone has been closed and the buffer has been drained.
    """

    def __init__(self, state: _ChannelState) -> None:
        self._state = state
        self._closed = False
        state.senders += 1

    @property
    def is_closed(self) -> bool:
        return self._closed or self._state.receiver_closed

    def clone(self) -> "NotificationSender":
        if self._closed:
            raise ChannelClosedError("Cannot clone a closed sender")
        return NotificationSender(self._state)

    async def send(self, notification: Notification) -> None:
        state = self._state
        while True:
            if self._closed or state.receiver_closed:
                raise ChannelClosedError("Notification channel is closed")
            if len(state.buffer) < state.maxsize:
                state.buffer.append(notification)
                state.wake()
                return
            await state.wait_for_change()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._state.senders -= 1
        self._state.wake()


class NotificationReceiver:
    """Receiving half; an async iterator over notifications in send order."""

    def __init__(self, state: _ChannelState) -> None:
        self._state = state

    @property
    def is_closed(self) -> bool:
        return self._state.receiver_closed

    async def recv(self) -> Optional[Notification]:
        """Next notification, or None once every sender is closed and the buffer is empty."""
        state = self._state
        while True:
            if state.buffer:
                notification = state.buffer.popleft()
                state.wake()
                return notification
            if state.receiver_closed or state.senders == 0:
                return None
            await state.wait_for_change()

    def close(self) -> None:
        """Stop receiving. Buffered notifications are dropped and senders fail fast."""
        state = self._state
        state.receiver_closed = True
        state.buffer.clear()
        state.wake()

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self

    async def __anext__(self) -> Notification:
        notification = await self.recv()
        if notification is None:
            raise StopAsyncIteration
        return notification


def channel(
    maxsize: int = DEFAULT_CHANNEL_SIZE,
) -> tuple[NotificationSender, NotificationReceiver]:
    state = _ChannelState(maxsize)
    return NotificationSender(state), NotificationReceiver(state)
