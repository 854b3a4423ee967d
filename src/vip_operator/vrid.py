"""Keepalived virtual router identifier (VRID) allocation.

Every cluster running the operator owns two adjacent VRIDs, one per VRRP
group.  The identifiers are recorded in two ledgers that have to agree:

* a local ledger kept in the durable record store, and
* ``VRID_allocations.conf`` on the keepalived host, which other clusters
  sharing the same appliance read and write too.

At start-up :meth:`VRIDAllocator.bootstrap` reconciles the local ledger from
the appliance once.  The appliance copy wins because keepalived cannot move a
running group to another VRID without a coordinated restart.  Afterwards the
local ledger is authoritative for lookups.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set

from .exceptions import NoIdentifiers, RecordNotFound
from .publisher import Publisher
from .store import RecordStore

LOG = logging.getLogger(__name__)

LEDGER_KEY = "vrid-allocations"
REMOTE_LEDGER_PATH = "/etc/keepalived/VRID_allocations.conf"
MAX_VRID = 255


@dataclass(frozen=True)
class VRIDPair:
    first: int
    second: int

    def __str__(self) -> str:
        return f"{self.first},{self.second}"

    def as_tuple(self):
        return self.first, self.second

    @classmethod
    def parse(cls, value: str) -> Optional["VRIDPair"]:
        parts = value.split(",")
        if len(parts) != 2:
            return None
        try:
            return cls(int(parts[0].strip()), int(parts[1].strip()))
        except ValueError:
            return None


Ledger = Dict[str, VRIDPair]


def parse_ledger(text: str) -> Ledger:
    """Parse ``cluster: id1,id2`` lines; comments and junk lines are skipped."""

    ledger: Ledger = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        pair = VRIDPair.parse(value) if sep else None
        if not key.strip() or pair is None:
            LOG.warning("ignoring malformed VRID ledger line '%s'", line)
            continue
        ledger[key.strip()] = pair
    return ledger


def format_ledger(ledger: Ledger) -> str:
    return "".join(f"{key}: {ledger[key]}\n" for key in sorted(ledger))


def used_identifiers(ledgers: Iterable[Ledger]) -> Set[int]:
    used: Set[int] = set()
    for ledger in ledgers:
        for pair in ledger.values():
            used.update(pair.as_tuple())
    return used


def find_unused_pair(used: Set[int], max_vrid: int = MAX_VRID) -> VRIDPair:
    """Return the first ``(i, i+1)`` pair with ``i`` odd and both members free."""

    for first in range(1, max_vrid, 2):
        if first not in used and first + 1 not in used:
            return VRIDPair(first, first + 1)
    raise NoIdentifiers(f"no free VRID pair in 1..{max_vrid}")


class VRIDAllocator:
    """Per-cluster VRID pairs kept convergent between two ledgers."""

    def __init__(
        self,
        records: RecordStore,
        publisher: Optional[Publisher] = None,
        *,
        max_vrid: int = MAX_VRID,
        lock: Optional[threading.RLock] = None,
        key: str = LEDGER_KEY,
        remote_path: str = REMOTE_LEDGER_PATH,
    ) -> None:
        self._records = records
        self._publisher = publisher
        self._max_vrid = max_vrid
        self._lock = lock or threading.RLock()
        self._key = key
        self._remote_path = remote_path

    # ------------------------------------------------------------------
    # Ledger access
    # ------------------------------------------------------------------
    def local_ledger(self) -> Ledger:
        try:
            data = self._records.get(self._key)
        except RecordNotFound:
            return {}
        return parse_ledger(data.decode("utf-8"))

    def remote_ledger(self) -> Ledger:
        if self._publisher is None:
            return {}
        return parse_ledger(self._publisher.fetch_file(self._remote_path))

    def _store_local(self, tenant: str, pair: VRIDPair) -> None:
        ledger = self.local_ledger()
        if ledger.get(tenant) == pair:
            return
        ledger[tenant] = pair
        self._records.put(self._key, format_ledger(ledger).encode("utf-8"))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def lookup(self, tenant: str) -> Optional[VRIDPair]:
        with self._lock:
            return self.local_ledger().get(tenant)

    def bootstrap(self, tenant: str) -> VRIDPair:
        """Reconcile ``tenant``'s pair from the appliance ledger into the local one."""

        with self._lock:
            if self._publisher is None:
                return self._allocate_local(tenant)

            remote = self.remote_ledger()
            pair = remote.get(tenant)
            if pair is not None:
                LOG.info("Adopting VRIDs %s for %s from appliance ledger", pair, tenant)
            else:
                if not remote:
                    LOG.info("Appliance VRID ledger is empty; seeding it for %s", tenant)
                pair = find_unused_pair(
                    used_identifiers([remote, self._others(tenant)]), self._max_vrid
                )
                remote[tenant] = pair
                self._publisher.push_file(self._remote_path, format_ledger(remote))
                LOG.info("Allocated VRIDs %s for %s", pair, tenant)

            self._store_local(tenant, pair)
            return pair

    def get_or_allocate(self, tenant: str) -> VRIDPair:
        with self._lock:
            pair = self.local_ledger().get(tenant)
            if pair is not None:
                return pair
            LOG.info("No local VRIDs for %s; allocating", tenant)
            return self.bootstrap(tenant)

    def _others(self, tenant: str) -> Ledger:
        return {k: v for k, v in self.local_ledger().items() if k != tenant}

    def _allocate_local(self, tenant: str) -> VRIDPair:
        ledger = self.local_ledger()
        pair = ledger.get(tenant)
        if pair is None:
            pair = find_unused_pair(used_identifiers([ledger]), self._max_vrid)
            self._store_local(tenant, pair)
            LOG.info("Allocated VRIDs %s for %s", pair, tenant)
        return pair
