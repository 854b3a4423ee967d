"""VIP and port allocation on top of :class:`~vip_operator.store.AllocationStore`."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from .exceptions import NoCapacity
from .store import Allocation, AllocationStore, ServiceKey

LOG = logging.getLogger(__name__)

MAX_PORT = 65535


def normalise_ports(ports: Iterable[int]) -> tuple:
    unique = sorted({int(p) for p in ports})
    if not unique:
        raise ValueError("at least one port is required")
    invalid = [p for p in unique if p < 1 or p > MAX_PORT]
    if invalid:
        raise ValueError(f"ports out of range: {invalid}")
    return tuple(unique)


class VIPAllocator:
    """First-fit assignment of pool addresses to services.

    Each service gets exactly one address.  Two services may share an address
    as long as their port sets do not intersect.  Candidates are tried in pool
    order and the first address without a conflict wins; no attempt is made to
    pack addresses tightly.

    Parameters
    ----------
    store:
        Allocation store; its lock serialises every allocate/release.
    pool:
        Ordered candidate addresses as produced by
        :func:`vip_operator.pool.parse_pool`.
    """

    def __init__(self, store: AllocationStore, pool: Sequence[str]) -> None:
        self._store = store
        self._pool: List[str] = list(pool)

    @property
    def store(self) -> AllocationStore:
        return self._store

    @property
    def pool(self) -> List[str]:
        return list(self._pool)

    def reload_pool(self, pool: Sequence[str]) -> None:
        """Swap the candidate list; existing allocations are kept as-is."""

        with self._store.lock:
            self._pool = list(pool)
            members = set(self._pool)
            orphaned = [a for a in self._store.allocations() if a.address not in members]
            for allocation in orphaned:
                LOG.warning(
                    "Allocation %s keeps %s which is no longer in the pool",
                    allocation.owner,
                    allocation.address,
                )
            LOG.info("IP pool reloaded with %d addresses", len(self._pool))

    def lookup(self, owner: ServiceKey) -> Optional[Allocation]:
        return self._store.get(owner)

    def allocate(self, owner: ServiceKey, ports: Iterable[int]) -> Allocation:
        """Return the allocation for ``owner``, creating it on first use."""

        required = normalise_ports(ports)
        with self._store.lock:
            existing = self._store.get(owner)
            if existing is not None:
                return existing

            for address in self._pool:
                if self._store.conflicts(address, required):
                    continue

                allocation = Allocation(
                    namespace=owner.namespace,
                    name=owner.name,
                    address=address,
                    ports=required,
                )
                self._store.add(allocation)
                LOG.info(
                    "Allocated %s ports %s to %s", address, list(required), owner
                )
                return allocation

        raise NoCapacity(
            f"no available IPs with ports {list(required)} for {owner}"
        )

    def release(self, owner: ServiceKey) -> Optional[Allocation]:
        """Release whatever ``owner`` holds.  Unknown owners are not an error."""

        with self._store.lock:
            allocation = self._store.remove(owner)
        if allocation is None:
            LOG.debug("release called for %s without an allocation", owner)
        else:
            LOG.info(
                "Released %s ports %s from %s",
                allocation.address,
                list(allocation.ports),
                owner,
            )
        return allocation
