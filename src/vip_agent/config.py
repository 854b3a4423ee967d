"""YAML configuration loader for the vip agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

import yaml

from vip_operator.config import OperatorConfig

AUTH_PASS_ENV = "KEEPALIVED_AUTH_PASS"
CLUSTER_NAME_ENV = "CLUSTER_NAME"


@dataclass
class PoolConfig:
    """Where the pool specification comes from: a file or inline text."""

    path: Optional[Path] = None
    text: Optional[str] = None
    key: str = "ip_pool"


@dataclass
class ApplianceConfig:
    type: str
    host: Optional[str] = None
    user: Optional[str] = None
    port: int = 22
    private_key: Optional[Path] = None
    known_hosts: Optional[Path] = None
    timeout: float = 10.0
    root: Optional[Path] = None
    execute: bool = False


@dataclass
class WatcherConfig:
    type: str
    path: Path
    interval: float = 5.0
    options: dict = field(default_factory=dict)


@dataclass
class AgentConfig:
    operator: OperatorConfig
    state_dir: Path
    pool: PoolConfig
    appliance: ApplianceConfig
    watchers: Sequence[WatcherConfig] = field(default_factory=list)
    workers: int = 2
    status_file: Optional[Path] = None


def _parse_operator(section: Mapping, environ: Mapping[str, str]) -> OperatorConfig:
    cluster_name = environ.get(CLUSTER_NAME_ENV) or section.get("cluster_name")
    if not cluster_name:
        raise ValueError(
            f"operator.cluster_name is required (or set {CLUSTER_NAME_ENV})"
        )
    defaults = OperatorConfig(cluster_name=str(cluster_name))

    return OperatorConfig(
        cluster_name=str(cluster_name),
        interface=str(section.get("interface", defaults.interface)),
        auth_pass=str(
            environ.get(AUTH_PASS_ENV) or section.get("auth_pass", defaults.auth_pass)
        ),
        nginx_conf_dir=str(section.get("nginx_conf_dir", defaults.nginx_conf_dir)),
        keepalived_dir=str(section.get("keepalived_dir", defaults.keepalived_dir)),
        nginx_reload_command=str(
            section.get("nginx_reload_command", defaults.nginx_reload_command)
        ),
        keepalived_restart_command=str(
            section.get("keepalived_restart_command", defaults.keepalived_restart_command)
        ),
        settle_delay=float(section.get("settle_delay", defaults.settle_delay)),
        retry_interval=float(section.get("retry_interval", defaults.retry_interval)),
        endpoint_retry_interval=float(
            section.get("endpoint_retry_interval", defaults.endpoint_retry_interval)
        ),
        max_vrid=int(section.get("max_vrid", defaults.max_vrid)),
    )


def _parse_pool(section) -> PoolConfig:
    if isinstance(section, str):
        return PoolConfig(text=section)
    if not isinstance(section, dict):
        raise ValueError("'pool' section must be a mapping or the pool text")
    path = section.get("path")
    text = section.get("text")
    if (path is None) == (text is None):
        raise ValueError("'pool' needs exactly one of 'path' or 'text'")
    return PoolConfig(
        path=Path(path) if path is not None else None,
        text=str(text) if text is not None else None,
        key=str(section.get("key", "ip_pool")),
    )


def _parse_appliance(section: Mapping) -> ApplianceConfig:
    kind = str(section.get("type", "ssh")).lower()
    if kind == "ssh":
        if not section.get("host") or not section.get("user"):
            raise ValueError("ssh appliance requires 'host' and 'user'")
    elif kind == "local":
        if not section.get("root"):
            raise ValueError("local appliance requires 'root'")
    else:
        raise ValueError(f"Unsupported appliance type '{kind}'")

    def _path(name: str) -> Optional[Path]:
        value = section.get(name)
        return Path(value) if value else None

    return ApplianceConfig(
        type=kind,
        host=section.get("host"),
        user=section.get("user"),
        port=int(section.get("port", 22)),
        private_key=_path("private_key"),
        known_hosts=_path("known_hosts"),
        timeout=float(section.get("timeout", 10.0)),
        root=_path("root"),
        execute=bool(section.get("execute", False)),
    )


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        options = entry.get("options", {})
        if not isinstance(options, dict):
            raise ValueError("watcher 'options' must be a mapping if provided")
        watchers.append(
            WatcherConfig(
                type=str(entry["type"]),
                path=Path(entry.get("path", ".")),
                interval=float(entry.get("interval", entry.get("poll_interval", 5.0))),
                options=options,
            )
        )
    return watchers


def load_config(path: Path, environ: Optional[Mapping[str, str]] = None) -> AgentConfig:
    environ = os.environ if environ is None else environ
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    operator = _parse_operator(data.get("operator") or {}, environ)

    pool_section = data.get("pool")
    if pool_section is None:
        raise ValueError("Configuration missing 'pool' section")
    pool = _parse_pool(pool_section)

    appliance_section = data.get("appliance")
    if not isinstance(appliance_section, dict):
        raise ValueError("Configuration missing 'appliance' section")
    appliance = _parse_appliance(appliance_section)

    state = data.get("state") or {}
    state_dir = Path(state.get("directory", "/var/lib/vip-operator"))
    status_file = state.get("status_file")

    watchers_section = data.get("watchers", [])
    if not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")

    workers = int(data.get("workers", 2))
    if workers < 1:
        raise ValueError("'workers' must be at least 1")

    return AgentConfig(
        operator=operator,
        state_dir=state_dir,
        pool=pool,
        appliance=appliance,
        watchers=_parse_watchers(watchers_section),
        workers=workers,
        status_file=Path(status_file) if status_file else None,
    )
