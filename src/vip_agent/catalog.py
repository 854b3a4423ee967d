"""In-process service catalog.

Stands in for the orchestration platform's API: watchers write desired
service records into it, the reconciler reads them back and writes
finalizers, assigned addresses and events.  Records of deleted services stay
until the reconciler drops its finalizer, the same contract a Kubernetes
object with a deletion timestamp follows.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Deque, Dict, List, Optional, Sequence

from vip_operator.config import ServiceRecord
from vip_operator.exceptions import ExternalUnavailable
from vip_operator.services import EndpointResolver, ServiceDirectory
from vip_operator.store import ServiceKey

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceEvent:
    key: ServiceKey
    type: str
    reason: str
    message: str
    timestamp: float


class ServiceCatalog(ServiceDirectory, EndpointResolver):
    """Thread-safe service records, endpoints, status and events."""

    def __init__(self, status_path: Optional[Path] = None, max_events: int = 1000) -> None:
        self._lock = threading.Lock()
        self._records: Dict[ServiceKey, ServiceRecord] = {}
        self._endpoints: Dict[ServiceKey, List[str]] = {}
        self._status_path = Path(status_path) if status_path else None
        self.events: Deque[ServiceEvent] = deque(maxlen=max_events)

    # ------------------------------------------------------------------
    # Watcher side
    # ------------------------------------------------------------------
    def upsert(self, record: ServiceRecord, endpoints: Sequence[str] = ()) -> None:
        with self._lock:
            current = self._records.get(record.key)
            if current is not None:
                # Finalizers and status belong to the controller, not the watcher.
                record = replace(
                    record,
                    finalizers=set(current.finalizers),
                    assigned_address=current.assigned_address,
                )
            self._records[record.key] = record
            self._endpoints[record.key] = list(dict.fromkeys(endpoints))

    def mark_deleted(self, key: ServiceKey) -> None:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return
            if record.finalizers:
                record.deleting = True
            else:
                self._forget(key)

    def keys(self) -> List[ServiceKey]:
        with self._lock:
            return sorted(self._records)

    # ------------------------------------------------------------------
    # ServiceDirectory
    # ------------------------------------------------------------------
    def get(self, key: ServiceKey) -> Optional[ServiceRecord]:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return replace(record, finalizers=set(record.finalizers))

    def add_finalizer(self, key: ServiceKey, finalizer: str) -> None:
        with self._lock:
            record = self._require(key)
            record.finalizers.add(finalizer)

    def remove_finalizer(self, key: ServiceKey, finalizer: str) -> None:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return
            record.finalizers.discard(finalizer)
            if record.deleting and not record.finalizers:
                self._forget(key)
        self._write_status()

    def set_assigned_address(self, key: ServiceKey, address: Optional[str]) -> None:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return
            record.assigned_address = address
        self._write_status()

    def record_event(
        self, key: ServiceKey, event_type: str, reason: str, message: str
    ) -> None:
        self.events.append(
            ServiceEvent(key, event_type, reason, message, timestamp=time.time())
        )
        log = LOG.warning if event_type == "Warning" else LOG.info
        log("%s %s: %s", key, reason, message)

    def events_for(self, key: ServiceKey) -> List[ServiceEvent]:
        return [event for event in list(self.events) if event.key == key]

    # ------------------------------------------------------------------
    # EndpointResolver
    # ------------------------------------------------------------------
    def resolve(self, key: ServiceKey) -> Sequence[str]:
        with self._lock:
            return list(self._endpoints.get(key, []))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require(self, key: ServiceKey) -> ServiceRecord:
        record = self._records.get(key)
        if record is None:
            raise ExternalUnavailable(f"service {key} not found")
        return record

    def _forget(self, key: ServiceKey) -> None:
        self._records.pop(key, None)
        self._endpoints.pop(key, None)

    def status_snapshot(self) -> Dict[str, Optional[str]]:
        with self._lock:
            return {
                str(key): record.assigned_address
                for key, record in sorted(self._records.items())
            }

    def _write_status(self) -> None:
        if self._status_path is None:
            return
        payload = {"services": self.status_snapshot()}
        try:
            self._status_path.parent.mkdir(parents=True, exist_ok=True)
            self._status_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            raise ExternalUnavailable(
                f"failed to write status file {self._status_path}: {exc}"
            ) from exc
