"""Configuration data structures for the operator.

These light-weight dataclasses describe the operator's global knobs and the
slice of a logical service the reconciler cares about.  They are filled in by
:mod:`vip_agent.config` from YAML, or built directly in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Set

from .store import ServiceKey

FINALIZER = "vip-operator.io/finalizer"


class ServiceType(Enum):
    """Service kinds.  Only ``LOAD_BALANCER`` services get a VIP."""

    CLUSTER_IP = "ClusterIP"
    NODE_PORT = "NodePort"
    LOAD_BALANCER = "LoadBalancer"

    @classmethod
    def parse(cls, value: str) -> "ServiceType":
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        raise ValueError(f"Unsupported service type '{value}'")


@dataclass(frozen=True)
class ServicePort:
    """A port exposed on the VIP and where NGINX forwards it.

    Attributes
    ----------
    port:
        Port NGINX listens on at the virtual IP.
    protocol:
        ``TCP`` or ``UDP``.
    node_port:
        When set, backends are reached on this port (node addresses as
        backends), mirroring how a NodePort service is fronted.
    target_port:
        Backend port when no node port is used.  Defaults to ``port``.
    """

    port: int
    protocol: str = "TCP"
    node_port: Optional[int] = None
    target_port: Optional[int] = None

    @property
    def backend_port(self) -> int:
        return self.node_port or self.target_port or self.port


@dataclass
class ServiceRecord:
    """Externally-owned description of a logical service."""

    key: ServiceKey
    type: ServiceType = ServiceType.LOAD_BALANCER
    ports: Sequence[ServicePort] = field(default_factory=list)
    finalizers: Set[str] = field(default_factory=set)
    deleting: bool = False
    assigned_address: Optional[str] = None

    @property
    def is_load_balancer(self) -> bool:
        return self.type is ServiceType.LOAD_BALANCER

    def required_ports(self) -> Set[int]:
        return {p.port for p in self.ports}


@dataclass(frozen=True)
class OperatorConfig:
    """Operator level configuration knobs."""

    cluster_name: str
    interface: str = "eth0"
    auth_pass: str = "changeme"
    nginx_conf_dir: str = "/etc/nginx/conf.d"
    keepalived_dir: str = "/etc/keepalived"
    nginx_reload_command: str = "sudo nginx -t && sudo nginx -s reload"
    keepalived_restart_command: str = "sudo systemctl restart keepalived"
    # Time keepalived needs to bind a new VIP before NGINX may listen on it.
    settle_delay: float = 3.0
    retry_interval: float = 30.0
    endpoint_retry_interval: float = 10.0
    max_vrid: int = 255
    finalizer: str = FINALIZER
