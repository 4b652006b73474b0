"""Registry mapping message ids to receiver callbacks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

# A handler returns None (success), a Status, or a message to send back.
MessageHandler = Callable[[Any], Any]


@dataclass(frozen=True)
class HandlerRegistration:
    msg_id: str
    handler: MessageHandler


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, HandlerRegistration] = {}

    def register(self, msg_id: str, handler: MessageHandler) -> None:
        if msg_id in self._handlers:
            raise ValueError(f"handler for '{msg_id}' already registered")
        self._handlers[msg_id] = HandlerRegistration(msg_id=msg_id, handler=handler)

    def handler(self, msg_id: str) -> Callable[[MessageHandler], MessageHandler]:
        """Decorator form of :meth:`register`."""

        def _decorator(fn: MessageHandler) -> MessageHandler:
            self.register(msg_id, fn)
            return fn

        return _decorator

    def get_handler(self, msg_id: str) -> MessageHandler | None:
        entry = self._handlers.get(msg_id)
        if entry is None:
            return None
        return entry.handler

    def msg_ids(self) -> tuple[str, ...]:
        return tuple(self._handlers.keys())

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._handlers

    def clear(self) -> None:
        self._handlers.clear()


__all__ = ["HandlerRegistration", "HandlerRegistry", "MessageHandler"]
