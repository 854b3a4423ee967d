"""Keepalived VRRP configuration for the cluster's VIP fleet."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .config import OperatorConfig
from .vrid import VRIDPair

MASTER_PRIORITY = 101
BACKUP_PRIORITY = 100


def split_groups(addresses: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split the distinct ``addresses`` into two VRRP groups.

    Addresses are ordered numerically and cut in half; the first group gets
    the extra address when the count is odd.  The split is a pure function of
    the address set, so republishing an unchanged fleet is byte-identical.
    """

    ordered = sorted(set(addresses), key=lambda a: int(ipaddress.IPv4Address(a)))
    half = (len(ordered) + 1) // 2
    return ordered[:half], ordered[half:]


@dataclass
class KeepalivedRenderResult:
    primary_text: str
    secondary_text: str
    primary_path: str
    secondary_path: str


class KeepalivedConfigRenderer:
    """Render the primary and secondary keepalived configuration files.

    Both appliance nodes carry both groups.  The primary file is MASTER for
    group 1 and BACKUP for group 2 and the secondary file is the mirror image,
    which spreads the VIPs across the two nodes while either can take over.
    """

    def __init__(self, config: OperatorConfig) -> None:
        self._config = config

    @property
    def primary_path(self) -> str:
        return f"{self._config.keepalived_dir.rstrip('/')}/{self._config.cluster_name}_keepalived.conf"

    @property
    def secondary_path(self) -> str:
        return f"{self.primary_path}.secondary"

    def render(self, vrids: VRIDPair, addresses: Iterable[str]) -> KeepalivedRenderResult:
        group1, group2 = split_groups(addresses)
        return KeepalivedRenderResult(
            primary_text=self._render_file(vrids, group1, group2, primary=True),
            secondary_text=self._render_file(vrids, group1, group2, primary=False),
            primary_path=self.primary_path,
            secondary_path=self.secondary_path,
        )

    def _render_file(
        self,
        vrids: VRIDPair,
        group1: Sequence[str],
        group2: Sequence[str],
        *,
        primary: bool,
    ) -> str:
        role = "primary" if primary else "secondary"
        sections = [f"# Managed by vip-operator for {self._config.cluster_name} ({role})"]
        sections.append(
            self._render_instance(1, vrids.first, group1, master=primary)
        )
        sections.append(
            self._render_instance(2, vrids.second, group2, master=not primary)
        )
        return "\n".join(sections) + "\n"

    def _render_instance(
        self,
        group: int,
        vrid: int,
        vips: Sequence[str],
        *,
        master: bool,
    ) -> str:
        name = f"{self._config.cluster_name}_VI_{group}"
        lines = [f"vrrp_instance {name} {{"]
        lines.append(f"    state {'MASTER' if master else 'BACKUP'}")
        lines.append(f"    interface {self._config.interface}")
        lines.append(f"    virtual_router_id {vrid}")
        lines.append(f"    priority {MASTER_PRIORITY if master else BACKUP_PRIORITY}")
        lines.append("    advert_int 1")
        lines.append("    authentication {")
        lines.append("        auth_type PASS")
        lines.append(f"        auth_pass {self._config.auth_pass}")
        lines.append("    }")
        lines.append("    virtual_ipaddress {")
        if vips:
            for vip in vips:
                lines.append(f"        {vip}")
        else:
            lines.append("        # no VIPs allocated yet")
        lines.append("    }")
        lines.append("}")
        return "\n".join(lines)
