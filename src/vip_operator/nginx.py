"""NGINX stream configuration for services exposed on a VIP."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .config import OperatorConfig, ServicePort, ServiceRecord
from .store import Allocation, ServiceKey


@dataclass
class RenderResult:
    """Result of an NGINX rendering operation."""

    config_text: str
    remote_path: str


class NginxConfigRenderer:
    """Render one ``conf.d`` snippet per service.

    The snippet is included from the ``stream {}`` context of the appliance's
    ``nginx.conf``; every service port becomes an upstream plus a ``server``
    listening on ``<vip>:<port>``.
    """

    def __init__(self, config: OperatorConfig) -> None:
        self._config = config

    def remote_path(self, key: ServiceKey) -> str:
        filename = f"vip-{self._config.cluster_name}-{key.namespace}-{key.name}.conf"
        return f"{self._config.nginx_conf_dir.rstrip('/')}/{filename}"

    def upstream_name(self, key: ServiceKey, port: ServicePort) -> str:
        return (
            f"{self._config.cluster_name}_{key.namespace}_{key.name}"
            f"_{port.port}_{port.protocol.lower()}"
        )

    def render(
        self,
        service: ServiceRecord,
        allocation: Allocation,
        endpoints: Sequence[str],
    ) -> RenderResult:
        sections = [
            f"# Managed by vip-operator for {self._config.cluster_name}/{service.key}",
            f"# VIP {allocation.address}",
        ]
        for port in sorted(service.ports, key=lambda p: (p.port, p.protocol)):
            sections.append(self._render_port(service.key, port, allocation, endpoints))

        body = "\n".join(sections) + "\n"
        return RenderResult(config_text=body, remote_path=self.remote_path(service.key))

    def _render_port(
        self,
        key: ServiceKey,
        port: ServicePort,
        allocation: Allocation,
        endpoints: Sequence[str],
    ) -> str:
        upstream = self.upstream_name(key, port)
        lines: List[str] = [f"upstream {upstream} {{"]
        for endpoint in endpoints:
            lines.append(f"    server {endpoint}:{port.backend_port};")
        lines.append("}")
        lines.append("")

        listen = f"{allocation.address}:{port.port}"
        if port.protocol.upper() == "UDP":
            listen += " udp"
        lines.append("server {")
        lines.append(f"    listen {listen};")
        lines.append(f"    proxy_pass {upstream};")
        lines.append("}")
        return "\n".join(lines)
