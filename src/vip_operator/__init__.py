"""VIP allocation and NGINX/keepalived reconciliation.

This package maps externally visible virtual IPs to logical services and keeps
an external NGINX + keepalived pair in sync with that mapping.  It covers:

* parsing the address pool (:mod:`vip_operator.pool`);
* first-fit VIP/port allocation persisted through a durable record
  (:mod:`vip_operator.store`, :mod:`vip_operator.allocator`);
* per-cluster keepalived VRID pairs reconciled against the appliance's own
  ledger (:mod:`vip_operator.vrid`);
* rendering NGINX and keepalived configuration and pushing it to the
  appliance (:mod:`vip_operator.nginx`, :mod:`vip_operator.keepalived`,
  :mod:`vip_operator.appliance`, :mod:`vip_operator.publisher`); and
* the per-service reconciliation pass with rollback on failure
  (:mod:`vip_operator.reconciler`).

Platform watches, leader election and process bootstrap live in
:mod:`vip_agent`.
"""

from .reconciler import ServiceReconciler  # noqa: F401

__all__ = ["ServiceReconciler"]
