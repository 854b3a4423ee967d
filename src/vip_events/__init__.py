"""Service event dispatch.

Watchers translate platform changes into :class:`ServiceUpsert` and
:class:`ServiceDelete` events and hand them to a :class:`HandlerRegistry`,
which fans them out to every registered handler.  The reconciler is plugged in
through :func:`vip_events.handlers.build_reconciler_adapter`.
"""

from .events import ServiceDelete, ServiceUpsert  # noqa: F401
from .registry import HandlerRegistry  # noqa: F401

__all__ = [
    "HandlerRegistry",
    "ServiceDelete",
    "ServiceUpsert",
]
