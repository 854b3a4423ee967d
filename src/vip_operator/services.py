"""Boundaries towards the orchestration platform.

The reconciler never talks to the platform directly.  It reads service
records, maintains its finalizer, publishes the assigned address and records
events through :class:`ServiceDirectory`, and asks an
:class:`EndpointResolver` for the current backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .config import ServiceRecord
from .store import ServiceKey

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class ServiceDirectory(ABC):
    @abstractmethod
    def get(self, key: ServiceKey) -> Optional[ServiceRecord]:
        """Return the current record for ``key`` or ``None`` once it is gone."""

    @abstractmethod
    def add_finalizer(self, key: ServiceKey, finalizer: str) -> None:
        """Attach ``finalizer``; already present is a no-op."""

    @abstractmethod
    def remove_finalizer(self, key: ServiceKey, finalizer: str) -> None:
        """Detach ``finalizer``; already absent is a no-op."""

    @abstractmethod
    def set_assigned_address(self, key: ServiceKey, address: Optional[str]) -> None:
        """Publish ``address`` as the service's externally visible VIP."""

    @abstractmethod
    def record_event(
        self, key: ServiceKey, event_type: str, reason: str, message: str
    ) -> None:
        """Attach a human readable event to the service."""


class EndpointResolver(ABC):
    @abstractmethod
    def resolve(self, key: ServiceKey) -> Sequence[str]:
        """Return ready backend addresses; an empty result is retryable."""
