from pathlib import Path

import pytest

from vip_operator.exceptions import NoIdentifiers
from vip_operator.publisher import LocalDirectoryPublisher
from vip_operator.store import MemoryRecordStore
from vip_operator.vrid import (
    LEDGER_KEY,
    REMOTE_LEDGER_PATH,
    VRIDAllocator,
    VRIDPair,
    find_unused_pair,
    format_ledger,
    parse_ledger,
)


def remote_text(publisher: LocalDirectoryPublisher) -> str:
    return publisher.local_path(REMOTE_LEDGER_PATH).read_text()


def test_parse_ledger_skips_malformed_lines():
    ledger = parse_ledger("# header\nalpha: 1,2\nbroken\nbeta: x,y\ngamma:3, 4\n")

    assert ledger == {"alpha": VRIDPair(1, 2), "gamma": VRIDPair(3, 4)}
    assert format_ledger(ledger) == "alpha: 1,2\ngamma: 3,4\n"


def test_find_unused_pair_skips_partially_used_pairs():
    assert find_unused_pair(set()) == VRIDPair(1, 2)
    assert find_unused_pair({1, 2, 4}) == VRIDPair(5, 6)


def test_find_unused_pair_exhaustion():
    used = set(range(1, 255))

    with pytest.raises(NoIdentifiers):
        find_unused_pair(used, 255)


def test_last_pair_fits_below_max():
    used = set(range(1, 253))

    assert find_unused_pair(used, 255) == VRIDPair(253, 254)


def test_bootstrap_seeds_empty_remote_ledger(tmp_path: Path):
    publisher = LocalDirectoryPublisher(tmp_path)
    records = MemoryRecordStore()
    allocator = VRIDAllocator(records, publisher)

    pair = allocator.bootstrap("alpha")

    assert pair == VRIDPair(1, 2)
    assert remote_text(publisher) == "alpha: 1,2\n"
    assert records.get(LEDGER_KEY) == b"alpha: 1,2\n"


def test_bootstrap_adopts_remote_pair(tmp_path: Path):
    publisher = LocalDirectoryPublisher(tmp_path)
    publisher.push_file(REMOTE_LEDGER_PATH, "alpha: 7,8\nbeta: 1,2\n")
    allocator = VRIDAllocator(MemoryRecordStore(), publisher)

    assert allocator.bootstrap("alpha") == VRIDPair(7, 8)
    assert allocator.lookup("alpha") == VRIDPair(7, 8)
    assert remote_text(publisher) == "alpha: 7,8\nbeta: 1,2\n"


def test_bootstrap_allocates_next_free_pair(tmp_path: Path):
    publisher = LocalDirectoryPublisher(tmp_path)
    publisher.push_file(REMOTE_LEDGER_PATH, "beta: 1,2\n")
    allocator = VRIDAllocator(MemoryRecordStore(), publisher)

    assert allocator.bootstrap("alpha") == VRIDPair(3, 4)
    assert parse_ledger(remote_text(publisher)) == {
        "alpha": VRIDPair(3, 4),
        "beta": VRIDPair(1, 2),
    }


def test_bootstrap_avoids_identifiers_in_local_ledger(tmp_path: Path):
    publisher = LocalDirectoryPublisher(tmp_path)
    records = MemoryRecordStore({LEDGER_KEY: b"gamma: 1,2\n"})
    allocator = VRIDAllocator(records, publisher)

    assert allocator.bootstrap("alpha") == VRIDPair(3, 4)


def test_get_or_allocate_is_lazy_and_stable(tmp_path: Path):
    publisher = LocalDirectoryPublisher(tmp_path)
    allocator = VRIDAllocator(MemoryRecordStore(), publisher)

    first = allocator.get_or_allocate("alpha")
    publisher.remove_file(REMOTE_LEDGER_PATH)
    second = allocator.get_or_allocate("alpha")

    assert first == second == VRIDPair(1, 2)


def test_tenants_never_share_identifiers():
    allocator = VRIDAllocator(MemoryRecordStore())
    pairs = [allocator.get_or_allocate(f"cluster-{i}") for i in range(5)]

    identifiers = [vrid for pair in pairs for vrid in pair.as_tuple()]
    assert len(identifiers) == len(set(identifiers))
    assert all(pair.first % 2 == 1 and pair.second == pair.first + 1 for pair in pairs)


def test_exhausted_namespace_raises(tmp_path: Path):
    publisher = LocalDirectoryPublisher(tmp_path)
    publisher.push_file(REMOTE_LEDGER_PATH, "beta: 1,2\n")
    allocator = VRIDAllocator(MemoryRecordStore(), publisher, max_vrid=2)

    with pytest.raises(NoIdentifiers):
        allocator.bootstrap("alpha")
