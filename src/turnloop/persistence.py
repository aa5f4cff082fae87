from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Protocol, runtime_checkable

from loguru import logger

from turnloop.types import Message


@runtime_checkable
class MessageStore(Protocol):
    async def save_message(self, message: Message) -> None: ...

    async def load_messages(self, session_id: str) -> list[Message]: ...


class InMemoryMessageStore:
    """Process-local store; writes for one session are serialized by a per-session lock."""

    def __init__(self) -> None:
        self._messages: dict[str, list[Message]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def save_message(self, message: Message) -> None:
        async with self._locks[message.session_id]:
            self._messages[message.session_id].append(message)
        logger.debug(f"Saved {message.role} message {message.id} (session={message.session_id})")

    async def load_messages(self, session_id: str) -> list[Message]:
        return list(self._messages.get(session_id, ()))

    def sessions(self) -> list[str]:
        return [sid for sid, messages in self._messages.items() if messages]

    def clear(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._messages.clear()
        else:
            self._messages.pop(session_id, None)
