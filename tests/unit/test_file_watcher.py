import json
from pathlib import Path
from threading import Event

from vip_agent.catalog import ServiceCatalog
from vip_agent.watchers.file import FileServiceWatcher
from vip_events import HandlerRegistry
from vip_events.handlers import ServiceHandler
from vip_operator.config import ServicePort, ServiceType
from vip_operator.store import ServiceKey

WEB = ServiceKey("demo", "web")


class RecordingHandler(ServiceHandler):
    def __init__(self):
        self.events = []

    def on_service_upsert(self, key):
        self.events.append(("upsert", key))

    def on_service_delete(self, key):
        self.events.append(("delete", key))


def write_services(path: Path, services) -> None:
    path.write_text(json.dumps({"services": services}))


def build_watcher(path: Path):
    registry = HandlerRegistry()
    recorder = RecordingHandler()
    registry.register("recorder", recorder)
    catalog = ServiceCatalog()
    watcher = FileServiceWatcher(
        registry=registry,
        catalog=catalog,
        path=path,
        interval=0.1,
        stop_event=Event(),
    )
    return watcher, recorder, catalog


def test_file_watcher_publishes_updates(tmp_path: Path):
    services_file = tmp_path / "services.json"
    write_services(
        services_file,
        [
            {
                "namespace": "demo",
                "name": "web",
                "ports": [{"port": 443, "nodePort": 30443}, 80],
                "endpoints": ["192.0.2.10", "192.0.2.10", "192.0.2.11"],
            }
        ],
    )
    watcher, recorder, catalog = build_watcher(services_file)

    watcher.poll()

    assert recorder.events == [("upsert", WEB)]
    record = catalog.get(WEB)
    assert record.type is ServiceType.LOAD_BALANCER
    assert list(record.ports) == [ServicePort(port=443, node_port=30443), ServicePort(port=80)]
    assert catalog.resolve(WEB) == ["192.0.2.10", "192.0.2.11"]

    # Unchanged content emits nothing.
    recorder.events.clear()
    watcher.poll()
    assert recorder.events == []

    write_services(
        services_file,
        [
            {
                "namespace": "demo",
                "name": "web",
                "ports": [{"port": 443, "nodePort": 30443}, 80],
                "endpoints": ["192.0.2.12"],
            }
        ],
    )
    watcher.poll()
    assert recorder.events == [("upsert", WEB)]
    assert catalog.resolve(WEB) == ["192.0.2.12"]


def test_file_watcher_emits_delete_for_removed_services(tmp_path: Path):
    services_file = tmp_path / "services.json"
    write_services(services_file, [{"namespace": "demo", "name": "web", "ports": [80]}])
    watcher, recorder, catalog = build_watcher(services_file)
    watcher.poll()
    catalog.add_finalizer(WEB, "vip-operator.io/finalizer")

    write_services(services_file, [])
    watcher.poll()

    assert recorder.events[-1] == ("delete", WEB)
    assert catalog.get(WEB).deleting is True


def test_file_watcher_ignores_missing_or_invalid_files(tmp_path: Path):
    services_file = tmp_path / "services.json"
    watcher, recorder, _ = build_watcher(services_file)

    assert watcher.poll() is None

    services_file.write_text("{not json")
    assert watcher.poll() is None

    services_file.write_text(json.dumps({"other": []}))
    assert watcher.poll() is None

    assert recorder.events == []


def test_resync_reemits_known_services(tmp_path: Path):
    services_file = tmp_path / "services.json"
    write_services(services_file, [{"namespace": "demo", "name": "web", "ports": [80]}])
    watcher, recorder, _ = build_watcher(services_file)
    watcher.poll()
    recorder.events.clear()

    watcher.resync()

    assert recorder.events == [("upsert", WEB)]
