"""Adapter between the service reconciler and the registry contract."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from vip_operator.reconciler import ReconcileResult, ServiceReconciler
from vip_operator.store import ServiceKey

from .base import ServiceHandler

LOG = logging.getLogger(__name__)


class KeyQueue(Protocol):
    def add(self, key: ServiceKey) -> None:
        ...


class ReconcilerAdapter(ServiceHandler):
    """Wrap :class:`~vip_operator.reconciler.ServiceReconciler` for registry use.

    With a queue, events only enqueue the key and worker threads run the
    passes.  Without one the pass runs inline, which keeps tests simple.
    """

    def __init__(
        self,
        reconciler: ServiceReconciler,
        *,
        queue: Optional[KeyQueue] = None,
    ) -> None:
        self._reconciler = reconciler
        self._queue = queue
        self.last_result: Optional[ReconcileResult] = None

    @property
    def reconciler(self) -> ServiceReconciler:
        return self._reconciler

    def on_service_upsert(self, key: ServiceKey) -> None:
        self._submit(key)

    def on_service_delete(self, key: ServiceKey) -> None:
        # Deletion is driven by the record's state, the pass is the same.
        self._submit(key)

    def _submit(self, key: ServiceKey) -> None:
        if self._queue is not None:
            self._queue.add(key)
            return
        self.last_result = self._reconciler.reconcile(key)
        if self.last_result.requeue:
            LOG.info(
                "%s needs a retry in %.1fs: %s",
                key,
                self.last_result.requeue_after,
                self.last_result.message,
            )


def build_reconciler_adapter(
    reconciler: ServiceReconciler,
    *,
    queue: Optional[KeyQueue] = None,
) -> ReconcilerAdapter:
    """Helper mirroring the builder pattern used for other handlers."""

    return ReconcilerAdapter(reconciler, queue=queue)
