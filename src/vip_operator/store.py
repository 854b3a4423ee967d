"""Allocation store and durable record backends.

The store keeps the allocation set and the derived port-usage index in
memory and writes the full allocation set back to a durable record after
every mutation.  It owns the process-wide lock that serialises allocation,
release and redundancy-identifier changes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import ExternalUnavailable, RecordNotFound

LOG = logging.getLogger(__name__)

ALLOCATIONS_KEY = "ip-allocations"

PortUsage = Dict[str, Dict[int, str]]


# ----------------------------------------------------------------------
# Durable records
# ----------------------------------------------------------------------
class RecordStore(ABC):
    """Create-or-update key/value storage for small records."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the value for ``key`` or raise :class:`RecordNotFound`."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any previous value."""


class MemoryRecordStore(RecordStore):
    def __init__(self, initial: Optional[Mapping[str, bytes]] = None) -> None:
        self._records: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes:
        try:
            return self._records[key]
        except KeyError:
            raise RecordNotFound(key) from None

    def put(self, key: str, data: bytes) -> None:
        self._records[key] = bytes(data)

    def keys(self) -> List[str]:
        return sorted(self._records)


class FileRecordStore(RecordStore):
    """One file per key below ``directory``.

    Writes go to a temporary file in the same directory followed by an atomic
    rename, so a crash never leaves a half-written record behind.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise ValueError(f"invalid record key '{key}'")
        return self._directory / key

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise RecordNotFound(key) from None
        except OSError as exc:
            raise ExternalUnavailable(f"failed to read record {path}: {exc}") from exc

    def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise ExternalUnavailable(f"failed to write record {path}: {exc}") from exc


# ----------------------------------------------------------------------
# Allocation model
# ----------------------------------------------------------------------
@dataclass(frozen=True, order=True)
class ServiceKey:
    """Namespace/name identity of a logical service."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ServiceKey":
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"service key '{value}' must look like namespace/name")
        return cls(namespace, name)


@dataclass(frozen=True)
class Allocation:
    """An address and the ports a single service holds on it."""

    namespace: str
    name: str
    address: str
    ports: Tuple[int, ...]

    @property
    def owner(self) -> ServiceKey:
        return ServiceKey(self.namespace, self.name)

    def to_dict(self) -> dict:
        return {
            "ownerNamespace": self.namespace,
            "ownerName": self.name,
            "address": self.address,
            "ports": list(self.ports),
        }

    @classmethod
    def from_dict(cls, entry: Mapping) -> "Allocation":
        # Older operator releases wrote Go field names without json tags.
        namespace = entry.get("ownerNamespace", entry.get("Namespace"))
        name = entry.get("ownerName", entry.get("Service"))
        address = entry.get("address", entry.get("IP"))
        ports = entry.get("ports", entry.get("Ports"))
        if not namespace or not name or not address or not ports:
            raise ValueError(f"incomplete allocation record: {entry!r}")
        return cls(
            namespace=str(namespace),
            name=str(name),
            address=str(address),
            ports=tuple(sorted({int(p) for p in ports})),
        )


def encode_allocations(allocations: Iterable[Allocation]) -> bytes:
    ordered = sorted(allocations, key=lambda a: (a.namespace, a.name))
    return json.dumps([a.to_dict() for a in ordered]).encode("utf-8")


def decode_allocations(data: bytes) -> List[Allocation]:
    if not data.strip():
        return []
    payload = json.loads(data.decode("utf-8"))
    if not isinstance(payload, list):
        raise ValueError("allocation record must be a JSON list")
    return [Allocation.from_dict(entry) for entry in payload]


def build_port_usage(allocations: Iterable[Allocation]) -> PortUsage:
    """Derive the address -> {port: owner} index from ``allocations``."""

    usage: PortUsage = {}
    for allocation in allocations:
        ports = usage.setdefault(allocation.address, {})
        for port in allocation.ports:
            ports[port] = str(allocation.owner)
    return usage


class AllocationStore:
    """In-memory allocation set backed by a durable record."""

    def __init__(self, records: RecordStore, key: str = ALLOCATIONS_KEY) -> None:
        self._records = records
        self._key = key
        self.lock = threading.RLock()
        self._allocations: Dict[ServiceKey, Allocation] = {}
        self._usage: PortUsage = {}

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------
    def load(self) -> None:
        with self.lock:
            try:
                data = self._records.get(self._key)
            except RecordNotFound:
                LOG.info("No allocation record '%s' yet; starting empty", self._key)
                data = b""

            allocations = decode_allocations(data)
            self._allocations = {a.owner: a for a in allocations}
            self._usage = build_port_usage(self._allocations.values())
            LOG.info("Loaded %d IP allocations", len(self._allocations))

    def _persist(self) -> None:
        self._records.put(self._key, encode_allocations(self._allocations.values()))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, owner: ServiceKey) -> Optional[Allocation]:
        with self.lock:
            return self._allocations.get(owner)

    def allocations(self) -> List[Allocation]:
        with self.lock:
            return sorted(self._allocations.values(), key=lambda a: (a.namespace, a.name))

    def addresses(self) -> List[str]:
        """Distinct addresses with at least one allocation."""

        with self.lock:
            return list(self._usage)

    def port_usage(self) -> PortUsage:
        with self.lock:
            return {address: dict(ports) for address, ports in self._usage.items()}

    def conflicts(self, address: str, ports: Iterable[int]) -> bool:
        with self.lock:
            used = self._usage.get(address, {})
            return any(port in used for port in ports)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add(self, allocation: Allocation) -> None:
        """Record ``allocation`` and persist; undo the change if persisting fails."""

        with self.lock:
            owner = allocation.owner
            if owner in self._allocations:
                raise ValueError(f"{owner} already holds an allocation")
            if self.conflicts(allocation.address, allocation.ports):
                raise ValueError(
                    f"ports {list(allocation.ports)} already in use on {allocation.address}"
                )

            self._allocations[owner] = allocation
            ports = self._usage.setdefault(allocation.address, {})
            for port in allocation.ports:
                ports[port] = str(owner)

            try:
                self._persist()
            except Exception:
                self._drop(allocation)
                raise

    def remove(self, owner: ServiceKey) -> Optional[Allocation]:
        """Drop the allocation held by ``owner``; unknown owners are a no-op."""

        with self.lock:
            allocation = self._allocations.get(owner)
            if allocation is None:
                return None

            self._drop(allocation)
            try:
                self._persist()
            except Exception:
                self._allocations[owner] = allocation
                ports = self._usage.setdefault(allocation.address, {})
                for port in allocation.ports:
                    ports[port] = str(owner)
                raise
            return allocation

    def _drop(self, allocation: Allocation) -> None:
        self._allocations.pop(allocation.owner, None)
        ports = self._usage.get(allocation.address)
        if ports is None:
            return
        for port in allocation.ports:
            ports.pop(port, None)
        if not ports:
            del self._usage[allocation.address]
