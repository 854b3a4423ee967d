"""Abstract interface for service event handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from vip_operator.store import ServiceKey


class ServiceHandler(ABC):
    """Base class for handlers managed by :class:`HandlerRegistry`."""

    @abstractmethod
    def on_service_upsert(self, key: ServiceKey) -> None:
        """React to ``key`` being created or updated."""

    @abstractmethod
    def on_service_delete(self, key: ServiceKey) -> None:
        """React to ``key`` being deleted."""
