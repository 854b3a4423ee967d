import pytest

from vip_operator.exceptions import InvalidPoolSpec
from vip_operator.pool import FilePoolSource, StaticPoolSource, load_pool, parse_pool


def test_parse_pool_expands_ranges_in_order():
    pool = parse_pool(
        """
# front-end VIPs
10.1.1.55

10.1.1.60-10.1.1.65
"""
    )

    assert pool == [
        "10.1.1.55",
        "10.1.1.60",
        "10.1.1.61",
        "10.1.1.62",
        "10.1.1.63",
        "10.1.1.64",
        "10.1.1.65",
    ]


def test_parse_pool_accepts_spaces_around_dash():
    assert parse_pool("10.0.0.1 - 10.0.0.2") == ["10.0.0.1", "10.0.0.2"]


def test_parse_pool_crosses_octet_boundary():
    assert parse_pool("10.0.0.254-10.0.1.1") == [
        "10.0.0.254",
        "10.0.0.255",
        "10.0.1.0",
        "10.0.1.1",
    ]


def test_parse_pool_terminates_at_top_of_address_space():
    pool = parse_pool("255.255.255.253-255.255.255.255")

    assert pool == ["255.255.255.253", "255.255.255.254", "255.255.255.255"]


def test_parse_pool_drops_duplicates_keeping_first_position():
    pool = parse_pool("10.0.0.2\n10.0.0.1-10.0.0.3\n10.0.0.2")

    assert pool == ["10.0.0.2", "10.0.0.1", "10.0.0.3"]


@pytest.mark.parametrize(
    "text",
    [
        "10.0.0.300",
        "not-an-ip",
        "10.0.0.1-10.0.0.2-10.0.0.3",
        "10.0.0.5-10.0.0.1",
        "2001:db8::1",
        "10.0.0.0-10.2.0.0",
    ],
)
def test_parse_pool_rejects_invalid_entries(text):
    with pytest.raises(InvalidPoolSpec):
        parse_pool(text)


def test_static_pool_source_missing_key():
    with pytest.raises(InvalidPoolSpec):
        load_pool(StaticPoolSource({}))


def test_file_pool_source_reads_plain_text(tmp_path):
    path = tmp_path / "pool.txt"
    path.write_text("# pool\n10.1.1.55\n10.1.1.56\n")

    assert load_pool(FilePoolSource(path)) == ["10.1.1.55", "10.1.1.56"]


def test_file_pool_source_reads_configmap_data(tmp_path):
    path = tmp_path / "pool.yaml"
    path.write_text("ip_pool: |\n  10.1.1.60-10.1.1.61\n  10.1.1.70\n")

    assert load_pool(FilePoolSource(path)) == ["10.1.1.60", "10.1.1.61", "10.1.1.70"]
