"""Event primitives consumed by the handler registry."""

from __future__ import annotations

from dataclasses import dataclass

from vip_operator.store import ServiceKey


@dataclass(frozen=True)
class ServiceUpsert:
    """A service was created or changed.

    Events only carry the identity.  Handlers re-read the full record, so a
    burst of updates collapses into a single reconciliation.
    """

    key: ServiceKey


@dataclass(frozen=True)
class ServiceDelete:
    """A service is being deleted."""

    key: ServiceKey
