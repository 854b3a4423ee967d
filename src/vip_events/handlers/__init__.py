"""Handlers plugged into :class:`vip_events.HandlerRegistry`."""

from .base import ServiceHandler  # noqa: F401
from .reconciler_adapter import ReconcilerAdapter, build_reconciler_adapter  # noqa: F401

__all__ = [
    "ReconcilerAdapter",
    "ServiceHandler",
    "build_reconciler_adapter",
]
