from pathlib import Path

import pytest

from vip_agent.config import load_config
from vip_agent.main import build_pool_source, build_publisher
from vip_operator.pool import load_pool
from vip_operator.publisher import LocalDirectoryPublisher, SSHPublisher


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(
        """
operator:
  cluster_name: alpha
  interface: ens192
  auth_pass: fromfile
  settle_delay: 1.5
  max_vrid: 100
pool:
  path: /etc/vip-operator/pool.yaml
appliance:
  type: ssh
  host: lb.example
  user: ops
  private_key: /etc/vip-operator/id_ed25519
state:
  directory: /var/lib/vip
  status_file: /var/lib/vip/status.json
workers: 4
watchers:
  - type: file
    path: /etc/vip-operator/services.json
    interval: 2
"""
    )

    cfg = load_config(config_path, environ={})

    assert cfg.operator.cluster_name == "alpha"
    assert cfg.operator.interface == "ens192"
    assert cfg.operator.auth_pass == "fromfile"
    assert cfg.operator.settle_delay == pytest.approx(1.5)
    assert cfg.operator.max_vrid == 100
    assert cfg.operator.nginx_conf_dir == "/etc/nginx/conf.d"
    assert cfg.pool.path == Path("/etc/vip-operator/pool.yaml")
    assert cfg.appliance.type == "ssh"
    assert cfg.appliance.private_key == Path("/etc/vip-operator/id_ed25519")
    assert cfg.state_dir == Path("/var/lib/vip")
    assert cfg.status_file == Path("/var/lib/vip/status.json")
    assert cfg.workers == 4
    assert len(cfg.watchers) == 1
    watcher = cfg.watchers[0]
    assert watcher.type == "file"
    assert watcher.path == Path("/etc/vip-operator/services.json")
    assert watcher.interval == pytest.approx(2.0)
    assert isinstance(build_publisher(cfg.appliance), SSHPublisher)


def test_environment_overrides_secrets(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(
        """
operator:
  auth_pass: fromfile
pool: |
  10.1.1.55
  10.1.1.60-10.1.1.61
appliance:
  type: local
  root: /tmp/appliance
"""
    )

    cfg = load_config(
        config_path,
        environ={"CLUSTER_NAME": "beta", "KEEPALIVED_AUTH_PASS": "fromenv"},
    )

    assert cfg.operator.cluster_name == "beta"
    assert cfg.operator.auth_pass == "fromenv"
    assert cfg.state_dir == Path("/var/lib/vip-operator")
    assert cfg.watchers == []
    assert isinstance(build_publisher(cfg.appliance), LocalDirectoryPublisher)
    assert load_pool(build_pool_source(cfg.pool), cfg.pool.key) == [
        "10.1.1.55",
        "10.1.1.60",
        "10.1.1.61",
    ]


@pytest.mark.parametrize(
    "body",
    [
        "pool: 10.0.0.1\nappliance: {type: local, root: /tmp}\n",
        "operator: {cluster_name: a}\nappliance: {type: local, root: /tmp}\n",
        "operator: {cluster_name: a}\npool: 10.0.0.1\nappliance: {type: ssh, host: lb}\n",
        "operator: {cluster_name: a}\npool: 10.0.0.1\nappliance: {type: telnet}\n",
        "operator: {cluster_name: a}\npool: {path: /a, text: b}\nappliance: {type: local, root: /tmp}\n",
        "operator: {cluster_name: a}\npool: 10.0.0.1\nappliance: {type: local, root: /tmp}\nworkers: 0\n",
    ],
)
def test_load_config_rejects_invalid_documents(tmp_path: Path, body):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(body)

    with pytest.raises(ValueError):
        load_config(config_path, environ={})
