import json

import pytest

from vip_operator.exceptions import ExternalUnavailable, RecordNotFound
from vip_operator.store import (
    ALLOCATIONS_KEY,
    Allocation,
    AllocationStore,
    FileRecordStore,
    MemoryRecordStore,
    ServiceKey,
    build_port_usage,
    decode_allocations,
)


class FailingRecordStore(MemoryRecordStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    def put(self, key, data):
        if self.fail:
            raise ExternalUnavailable("record store unavailable")
        super().put(key, data)


def test_file_record_store_round_trip(tmp_path):
    records = FileRecordStore(tmp_path / "state")

    with pytest.raises(RecordNotFound):
        records.get("ip-allocations")

    records.put("ip-allocations", b"[]")
    records.put("ip-allocations", b"[1]")

    assert records.get("ip-allocations") == b"[1]"
    assert sorted(p.name for p in (tmp_path / "state").iterdir()) == ["ip-allocations"]


def test_file_record_store_rejects_path_keys(tmp_path):
    records = FileRecordStore(tmp_path)

    with pytest.raises(ValueError):
        records.put("../escape", b"")


def test_store_persists_documented_json_format():
    records = MemoryRecordStore()
    store = AllocationStore(records)
    store.load()

    store.add(Allocation("demo", "web", "10.1.1.55", (80, 443)))

    payload = json.loads(records.get(ALLOCATIONS_KEY))
    assert payload == [
        {
            "ownerNamespace": "demo",
            "ownerName": "web",
            "address": "10.1.1.55",
            "ports": [80, 443],
        }
    ]


def test_store_reloads_allocations_and_rebuilds_index():
    records = MemoryRecordStore()
    first = AllocationStore(records)
    first.load()
    first.add(Allocation("demo", "web", "10.1.1.55", (80,)))
    first.add(Allocation("demo", "dns", "10.1.1.55", (53,)))

    second = AllocationStore(records)
    second.load()

    assert second.get(ServiceKey("demo", "web")) == Allocation("demo", "web", "10.1.1.55", (80,))
    assert second.port_usage() == {"10.1.1.55": {80: "demo/web", 53: "demo/dns"}}


def test_store_reads_legacy_field_names():
    legacy = json.dumps(
        [{"Namespace": "demo", "Service": "web", "IP": "10.1.1.55", "Ports": [443, 80]}]
    ).encode()

    assert decode_allocations(legacy) == [Allocation("demo", "web", "10.1.1.55", (80, 443))]


def test_store_rolls_back_add_when_persist_fails():
    records = FailingRecordStore()
    store = AllocationStore(records)
    store.load()
    records.fail = True

    with pytest.raises(ExternalUnavailable):
        store.add(Allocation("demo", "web", "10.1.1.55", (80,)))

    assert store.get(ServiceKey("demo", "web")) is None
    assert store.port_usage() == {}


def test_store_restores_allocation_when_remove_cannot_persist():
    records = FailingRecordStore()
    store = AllocationStore(records)
    store.load()
    allocation = Allocation("demo", "web", "10.1.1.55", (80,))
    store.add(allocation)
    records.fail = True

    with pytest.raises(ExternalUnavailable):
        store.remove(allocation.owner)

    assert store.get(allocation.owner) == allocation
    assert store.port_usage() == build_port_usage([allocation])


def test_store_remove_drops_empty_address_entry():
    store = AllocationStore(MemoryRecordStore())
    store.load()
    store.add(Allocation("demo", "web", "10.1.1.55", (80,)))

    store.remove(ServiceKey("demo", "web"))

    assert store.port_usage() == {}
    assert store.addresses() == []


def test_store_refuses_conflicting_ports():
    store = AllocationStore(MemoryRecordStore())
    store.load()
    store.add(Allocation("demo", "web", "10.1.1.55", (80,)))

    with pytest.raises(ValueError):
        store.add(Allocation("demo", "other", "10.1.1.55", (80, 8080)))


def test_service_key_parse():
    assert ServiceKey.parse("demo/web") == ServiceKey("demo", "web")
    assert str(ServiceKey("demo", "web")) == "demo/web"

    with pytest.raises(ValueError):
        ServiceKey.parse("web")
