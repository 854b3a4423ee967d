"""Tiny handler registry dispatching service events."""

from __future__ import annotations

from typing import Dict

from .events import ServiceDelete, ServiceUpsert
from .handlers import ServiceHandler


class HandlerRegistry:
    """Dispatch service events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ServiceHandler] = {}

    def register(self, name: str, handler: ServiceHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"handler '{name}' already registered")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def handle(self, event: ServiceUpsert | ServiceDelete) -> None:
        if isinstance(event, ServiceUpsert):
            self._on_service_upsert(event)
        elif isinstance(event, ServiceDelete):
            self._on_service_delete(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event)!r}")

    def _on_service_upsert(self, event: ServiceUpsert) -> None:
        for handler in self._handlers.values():
            handler.on_service_upsert(event.key)

    def _on_service_delete(self, event: ServiceDelete) -> None:
        for handler in self._handlers.values():
            handler.on_service_delete(event.key)
