"""File-based service watcher.

Polls a JSON document describing the desired services::

    {
      "services": [
        {
          "namespace": "demo",
          "name": "web",
          "type": "LoadBalancer",
          "ports": [{"port": 80, "nodePort": 30080}],
          "endpoints": ["192.0.2.10", "192.0.2.11"]
        }
      ]
    }

and feeds the differences into the catalog and the handler registry.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Event, Thread
from typing import Dict, Iterable, List, Optional, Tuple

from vip_events import HandlerRegistry
from vip_events.events import ServiceDelete, ServiceUpsert
from vip_operator.config import ServicePort, ServiceRecord, ServiceType
from vip_operator.store import ServiceKey

from ..catalog import ServiceCatalog

LOG = logging.getLogger(__name__)

Desired = Dict[ServiceKey, Tuple[ServiceRecord, List[str]]]


def _parse_port(entry) -> ServicePort:
    if isinstance(entry, int):
        return ServicePort(port=entry)
    node_port = entry.get("nodePort", entry.get("node_port"))
    target_port = entry.get("targetPort", entry.get("target_port"))
    return ServicePort(
        port=int(entry["port"]),
        protocol=str(entry.get("protocol", "TCP")).upper(),
        node_port=int(node_port) if node_port is not None else None,
        target_port=int(target_port) if target_port is not None else None,
    )


def _normalise(endpoints: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(str(e) for e in endpoints))


def _extract_state(payload: dict) -> Desired:
    services = payload.get("services")
    if services is None:
        raise ValueError("services file missing 'services' key")

    state: Desired = {}
    for entry in services:
        namespace = entry.get("namespace")
        name = entry.get("name")
        if namespace is None or name is None:
            continue
        key = ServiceKey(str(namespace), str(name))
        record = ServiceRecord(
            key=key,
            type=ServiceType.parse(entry.get("type", "LoadBalancer")),
            ports=[_parse_port(p) for p in entry.get("ports", [])],
        )
        state[key] = (record, _normalise(entry.get("endpoints", [])))
    return state


def _fingerprint(record: ServiceRecord, endpoints: List[str]) -> tuple:
    return record.type, tuple(record.ports), tuple(endpoints)


class FileServiceWatcher(Thread):
    """Poll a JSON services file and publish service events."""

    def __init__(
        self,
        registry: HandlerRegistry,
        catalog: ServiceCatalog,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True)
        self._registry = registry
        self._catalog = catalog
        self._path = Path(path)
        self._interval = interval
        self._stop_event = stop_event
        self._state: Dict[ServiceKey, tuple] = {}

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("file watcher encountered an error")
            self._stop_event.wait(self._interval)

    def resync(self) -> None:
        """Re-emit an upsert for every known service."""

        for key in list(self._state):
            self._registry.handle(ServiceUpsert(key))

    def poll(self) -> Optional[Desired]:
        if not self._path.exists():
            LOG.debug("services file %s does not exist yet", self._path)
            return None

        try:
            payload = json.loads(self._path.read_text())
        except json.JSONDecodeError as exc:
            LOG.warning("failed to parse services file %s: %s", self._path, exc)
            return None

        try:
            desired = _extract_state(payload)
        except (ValueError, KeyError, TypeError) as exc:
            LOG.warning("invalid services file %s: %s", self._path, exc)
            return None

        for key, (record, endpoints) in desired.items():
            fingerprint = _fingerprint(record, endpoints)
            if self._state.get(key) != fingerprint:
                LOG.debug("service %s updated: %s", key, fingerprint)
                self._catalog.upsert(record, endpoints)
                self._state[key] = fingerprint
                self._registry.handle(ServiceUpsert(key))

        for key in set(self._state) - set(desired):
            LOG.debug("service %s removed", key)
            self._catalog.mark_deleted(key)
            del self._state[key]
            self._registry.handle(ServiceDelete(key))

        return desired
