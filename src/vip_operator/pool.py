"""Address pool parsing.

The pool is a small text document, one entry per line::

    # front-end VIPs
    10.1.1.55
    10.1.1.60 - 10.1.1.65

Single addresses and inclusive ranges are expanded into an ordered candidate
list.  The allocator walks that list first-fit, so the order in the document
is the order in which addresses get handed out.
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Mapping

import yaml

from .exceptions import InvalidPoolSpec

LOG = logging.getLogger(__name__)

POOL_KEY = "ip_pool"

# Upper bound on a single range so a typo such as 10.0.0.1-10.255.0.1 fails
# instead of materialising millions of candidates.
MAX_RANGE_SIZE = 65536


def _parse_address(value: str) -> ipaddress.IPv4Address:
    text = value.strip()
    try:
        return ipaddress.IPv4Address(text)
    except ipaddress.AddressValueError as exc:
        raise InvalidPoolSpec(f"invalid IPv4 address '{text}'") from exc


def expand_range(line: str) -> List[str]:
    """Expand ``start - end`` into every address in between, inclusive."""

    parts = line.split("-")
    if len(parts) != 2:
        raise InvalidPoolSpec(f"invalid IP range format '{line}'")

    start = int(_parse_address(parts[0]))
    end = int(_parse_address(parts[1]))
    if end < start:
        raise InvalidPoolSpec(f"IP range '{line}' ends before it starts")
    if end - start + 1 > MAX_RANGE_SIZE:
        raise InvalidPoolSpec(
            f"IP range '{line}' spans {end - start + 1} addresses "
            f"(limit {MAX_RANGE_SIZE})"
        )

    # Integer walk bounded by ``end``: 255.255.255.255 terminates the range.
    return [str(ipaddress.IPv4Address(value)) for value in range(start, end + 1)]


def parse_pool(text: str) -> List[str]:
    """Return the ordered, de-duplicated list of candidate addresses."""

    addresses: Dict[str, None] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "-" in line:
            expanded: Iterable[str] = expand_range(line)
        else:
            expanded = [str(_parse_address(line))]
        for address in expanded:
            if address in addresses:
                LOG.debug("ignoring duplicate pool address %s", address)
                continue
            addresses[address] = None
    return list(addresses)


class PoolSource(ABC):
    """Configuration source holding the textual pool specification."""

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the pool text stored under ``key``."""


class StaticPoolSource(PoolSource):
    """Pool text held in memory, keyed like a ConfigMap's data section."""

    def __init__(self, data: Mapping[str, str]) -> None:
        self._data = dict(data)

    def get(self, key: str) -> str:
        try:
            return self._data[key]
        except KeyError:
            raise InvalidPoolSpec(f"{key} not found in pool configuration") from None


class FilePoolSource(PoolSource):
    """Read the pool from a file.

    The file either contains the pool text directly or is a YAML mapping with
    the text under the requested key (the shape of an exported ConfigMap
    ``data`` section).
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def get(self, key: str) -> str:
        try:
            content = self._path.read_text()
        except OSError as exc:
            raise InvalidPoolSpec(f"cannot read pool file {self._path}: {exc}") from exc

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError:
            data = None
        if isinstance(data, dict):
            if key not in data:
                raise InvalidPoolSpec(f"{key} not found in {self._path}")
            return str(data[key])
        return content


def load_pool(source: PoolSource, key: str = POOL_KEY) -> List[str]:
    pool = parse_pool(source.get(key))
    LOG.info("Loaded IP pool with %d addresses", len(pool))
    return pool
