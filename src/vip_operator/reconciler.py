"""Service reconciliation.

One :meth:`ServiceReconciler.reconcile` call is one pass over a single
service.  Passes are level-triggered: they read the current service record,
compare it against the allocation store and push whatever the appliance is
missing.  Every step is safe to repeat, so a pass interrupted at any point is
recovered by simply running it again.

A pass that converges walks ``PENDING -> ALLOCATING -> PUBLISHING ->
VERIFYING -> CONVERGED``.  Deleted services walk ``DELETING -> RELEASED``.
Side effects committed during a pass register a compensating action; when a
later step fails the compensations run in reverse so that a failed service
never keeps an address the appliance does not serve.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set, Tuple

from .allocator import VIPAllocator
from .appliance import ApplianceClient
from .config import OperatorConfig, ServiceRecord
from .exceptions import ExternalUnavailable, NoCapacity, NoEndpoints, NoIdentifiers
from .services import EVENT_NORMAL, EVENT_WARNING, EndpointResolver, ServiceDirectory
from .store import Allocation, ServiceKey
from .vrid import VRIDAllocator, VRIDPair

LOG = logging.getLogger(__name__)


class Phase(Enum):
    PENDING = "Pending"
    SKIPPED = "Skipped"
    ALLOCATING = "Allocating"
    PUBLISHING = "Publishing"
    VERIFYING = "Verifying"
    CONVERGED = "Converged"
    DELETING = "Deleting"
    RELEASED = "Released"
    FAILED = "Failed"


@dataclass
class ReconcileResult:
    """Outcome of a pass.  ``requeue_after`` is set for retryable failures."""

    phase: Phase
    requeue_after: Optional[float] = None
    message: str = ""
    address: Optional[str] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


@dataclass
class ReconciliationRecord:
    """Transient state of a single pass."""

    key: ServiceKey
    ports: Set[int]
    allocation: Optional[Allocation] = None
    created: bool = False
    vrids: Optional[VRIDPair] = None
    endpoints: Sequence[str] = field(default_factory=list)
    compensations: List[Tuple[str, Callable[[], object]]] = field(default_factory=list)

    def add_compensation(self, description: str, action: Callable[[], object]) -> None:
        self.compensations.append((description, action))

    def rollback(self) -> None:
        while self.compensations:
            description, action = self.compensations.pop()
            LOG.info("Rolling back %s for %s", description, self.key)
            try:
                action()
            except Exception:
                LOG.exception("Rollback step '%s' failed for %s", description, self.key)


class ServiceReconciler:
    """Drive a service through allocation, appliance publication and status."""

    def __init__(
        self,
        config: OperatorConfig,
        allocator: VIPAllocator,
        vrids: VRIDAllocator,
        appliance: ApplianceClient,
        services: ServiceDirectory,
        resolver: EndpointResolver,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._allocator = allocator
        self._vrids = vrids
        self._appliance = appliance
        self._services = services
        self._resolver = resolver
        self._sleep = sleep
        # Fleet snapshot and keepalived push must not interleave between passes.
        self._redundancy_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def reconcile(self, key: ServiceKey) -> ReconcileResult:
        service = self._services.get(key)
        if service is None:
            # Without a record no finalizer marks pending removal, so the
            # idempotent removal steps always run.
            LOG.info("Service %s is gone; releasing its resources", key)
            return self._finalize(key, None)

        finalizer = self._config.finalizer
        if service.deleting or not service.is_load_balancer:
            if finalizer in service.finalizers:
                return self._finalize(key, service)
            if service.deleting:
                return ReconcileResult(Phase.RELEASED)
            return ReconcileResult(Phase.SKIPPED)

        if finalizer not in service.finalizers:
            try:
                self._services.add_finalizer(key, finalizer)
            except ExternalUnavailable as exc:
                LOG.warning("Could not add finalizer to %s: %s", key, exc)
                return ReconcileResult(
                    Phase.PENDING, self._config.retry_interval, str(exc)
                )
        return self._converge(service)

    # ------------------------------------------------------------------
    # Converge path
    # ------------------------------------------------------------------
    def _converge(self, service: ServiceRecord) -> ReconcileResult:
        key = service.key
        record = ReconciliationRecord(key=key, ports=service.required_ports())
        phase = Phase.ALLOCATING
        try:
            self._allocate(service, record)
            record.vrids = self._vrids.get_or_allocate(self._config.cluster_name)

            phase = Phase.PUBLISHING
            self._publish(service, record)

            phase = Phase.VERIFYING
            self._services.set_assigned_address(key, record.allocation.address)
        except NoCapacity as exc:
            LOG.error("Failed to allocate IP for %s: %s", key, exc)
            self._event(key, EVENT_WARNING, "IPAllocationFailed", str(exc))
            return ReconcileResult(Phase.FAILED, message=str(exc))
        except NoIdentifiers as exc:
            record.rollback()
            LOG.error("Failed to obtain VRIDs for %s: %s", key, exc)
            self._event(key, EVENT_WARNING, "VRIDError", str(exc))
            return ReconcileResult(Phase.FAILED, message=str(exc))
        except ValueError as exc:
            record.rollback()
            LOG.error("Service %s cannot be load balanced: %s", key, exc)
            self._event(key, EVENT_WARNING, "InvalidService", str(exc))
            return ReconcileResult(Phase.FAILED, message=str(exc))
        except NoEndpoints as exc:
            record.rollback()
            LOG.info("No endpoints for %s yet; retrying", key)
            self._event(key, EVENT_WARNING, "NoEndpoints", str(exc))
            return ReconcileResult(
                Phase.FAILED, self._config.endpoint_retry_interval, str(exc)
            )
        except ExternalUnavailable as exc:
            if phase is Phase.VERIFYING:
                # The appliance already serves the VIP; only the status is stale.
                LOG.warning("Failed to update status of %s: %s", key, exc)
                return ReconcileResult(
                    Phase.VERIFYING,
                    self._config.retry_interval,
                    str(exc),
                    address=record.allocation.address,
                )
            record.rollback()
            LOG.error("Failed to publish %s: %s", key, exc)
            self._event(key, EVENT_WARNING, "PublishFailed", str(exc))
            return ReconcileResult(Phase.FAILED, self._config.retry_interval, str(exc))
        except Exception:
            record.rollback()
            raise

        LOG.info("Service %s converged on %s", key, record.allocation.address)
        return ReconcileResult(Phase.CONVERGED, address=record.allocation.address)

    def _allocate(self, service: ServiceRecord, record: ReconciliationRecord) -> None:
        key = service.key
        existing = self._allocator.lookup(key)
        allocation = self._allocator.allocate(key, record.ports)
        record.allocation = allocation

        if existing is None:
            record.created = True
            record.add_compensation(
                "IP allocation", lambda: self._allocator.release(key)
            )
            self._event(
                key,
                EVENT_NORMAL,
                "IPAllocated",
                f"Allocated {allocation.address} ports {list(allocation.ports)}",
            )
        elif set(allocation.ports) != record.ports:
            LOG.warning(
                "Service %s requests ports %s but holds %s; keeping the allocation",
                key,
                sorted(record.ports),
                list(allocation.ports),
            )
            self._event(
                key,
                EVENT_WARNING,
                "PortsChanged",
                f"Ports changed to {sorted(record.ports)}; only "
                f"{list(allocation.ports)} are served until the service is recreated",
            )

    def _publish(self, service: ServiceRecord, record: ReconciliationRecord) -> None:
        key = service.key
        endpoints = list(self._resolver.resolve(key))
        if not endpoints:
            raise NoEndpoints(f"no endpoints found for service {key}")
        record.endpoints = endpoints

        self._publish_redundancy(record.vrids)
        if record.created:
            record.add_compensation(
                "keepalived config",
                lambda: self._publish_redundancy(record.vrids, exclude=key),
            )
        self._event(key, EVENT_NORMAL, "KeepalivedConfigured", "Keepalived updated")

        if self._config.settle_delay > 0:
            LOG.info(
                "Waiting %.1fs for keepalived to apply VIPs", self._config.settle_delay
            )
            self._sleep(self._config.settle_delay)

        allowed = set(record.allocation.ports)
        served = ServiceRecord(
            key=service.key,
            type=service.type,
            ports=[p for p in service.ports if p.port in allowed],
        )
        self._appliance.publish_service(served, record.allocation, endpoints)
        if record.created:
            record.add_compensation(
                "NGINX config", lambda: self._appliance.remove_service(key)
            )
        self._event(key, EVENT_NORMAL, "NGINXConfigured", "NGINX configured successfully")

    def _publish_redundancy(
        self,
        vrids: VRIDPair,
        exclude: Optional[ServiceKey] = None,
        *,
        only_if_changed: bool = False,
    ) -> None:
        with self._redundancy_lock:
            addresses = [
                a.address
                for a in self._allocator.store.allocations()
                if exclude is None or a.owner != exclude
            ]
            self._appliance.publish_redundancy(
                vrids, addresses, only_if_changed=only_if_changed
            )

    # ------------------------------------------------------------------
    # Delete path
    # ------------------------------------------------------------------
    def _finalize(
        self, key: ServiceKey, service: Optional[ServiceRecord]
    ) -> ReconcileResult:
        try:
            released = self._allocator.release(key)
            if released is not None:
                self._event(
                    key, EVENT_NORMAL, "IPReleased", f"Released {released.address}"
                )

            # Each removal step is a no-op when the appliance already
            # reflects it.
            if self._appliance.remove_service(key, only_if_present=True):
                self._event(
                    key, EVENT_NORMAL, "NGINXRemoved", "NGINX configuration removed"
                )

            vrids = self._vrids.get_or_allocate(self._config.cluster_name)
            self._publish_redundancy(vrids, only_if_changed=True)

            if service is not None:
                self._services.set_assigned_address(key, None)
                self._services.remove_finalizer(key, self._config.finalizer)
        except NoIdentifiers as exc:
            LOG.error("Failed to obtain VRIDs while finalizing %s: %s", key, exc)
            self._event(key, EVENT_WARNING, "VRIDError", str(exc))
            return ReconcileResult(Phase.DELETING, self._config.retry_interval, str(exc))
        except ExternalUnavailable as exc:
            LOG.error("Failed to finalize %s: %s", key, exc)
            self._event(key, EVENT_WARNING, "FinalizeFailed", str(exc))
            return ReconcileResult(Phase.DELETING, self._config.retry_interval, str(exc))

        LOG.info("Finalized service %s", key)
        return ReconcileResult(Phase.RELEASED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _event(self, key: ServiceKey, event_type: str, reason: str, message: str) -> None:
        try:
            self._services.record_event(key, event_type, reason, message)
        except ExternalUnavailable as exc:
            LOG.warning("Dropping event %s for %s: %s", reason, key, exc)
