"""Shared fixtures: an in-memory DNS provider and an isolated environment."""

from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from dns_set.cli import DNSProvider, DNSRecord, DNSSetError, RecordType, Zone

ENV_VARS = (
    "CLOUDFLARE_API_TOKEN",
    "DNS_PROVIDER",
    "DNS_SET_CONFIG_DIR",
    "DNS_SET_CADDYFILE_PATH",
    "DNS_SET_DEFAULT_TTL",
    "DNS_SET_EXCLUDE_DOMAINS",
    "DNS_SET_UPDATE_ON_TTL_DRIFT",
    "XDG_CONFIG_HOME",
)


# =============================================================================
# Mock DNS Provider
# =============================================================================


class MockDNSProvider(DNSProvider):
    """Mock DNS provider with in-memory zones/records and call tracking."""

    supports_proxy = True

    def __init__(
        self,
        zones: Optional[Dict[str, List[Zone]]] = None,
        records: Optional[Dict[str, List[DNSRecord]]] = None,
        errors: Optional[Dict[str, DNSSetError]] = None,
    ):
        self._zones = zones or {}
        self._records: Dict[str, List[DNSRecord]] = {
            zone_id: list(recs) for zone_id, recs in (records or {}).items()
        }
        self._errors = errors or {}
        self._next_id = 1
        self.find_zone_calls: List[str] = []
        self.list_calls: List[Tuple[str, str, Optional[RecordType]]] = []
        self.create_calls: List[Tuple[str, str, RecordType, str, int, bool]] = []
        self.update_calls: List[Tuple[str, str, str, RecordType, str, int, bool]] = []

    @property
    def name(self) -> str:
        return "MockDNS"

    def _maybe_fail(self, operation: str) -> None:
        if operation in self._errors:
            raise self._errors[operation]

    def find_zones(self, root_domain: str) -> List[Zone]:
        self.find_zone_calls.append(root_domain)
        self._maybe_fail("find_zones")
        return list(self._zones.get(root_domain, []))

    def list_records(
        self, zone_id: str, name: str, record_type: Optional[RecordType] = None
    ) -> List[DNSRecord]:
        self.list_calls.append((zone_id, name, record_type))
        self._maybe_fail("list_records")
        return [
            r
            for r in self._records.get(zone_id, [])
            if r.name == name and (record_type is None or r.type is record_type)
        ]

    def create_record(self, zone_id, name, record_type, content, ttl, proxied=False) -> DNSRecord:
        self.create_calls.append((zone_id, name, record_type, content, ttl, proxied))
        self._maybe_fail("create_record")
        record = DNSRecord(
            id=f"new-{self._next_id}",
            name=name,
            type=record_type,
            content=content,
            ttl=ttl,
            proxied=proxied,
        )
        self._next_id += 1
        self._records.setdefault(zone_id, []).append(record)
        return record

    def update_record(
        self, zone_id, record_id, name, record_type, content, ttl, proxied=False
    ) -> DNSRecord:
        self.update_calls.append((zone_id, record_id, name, record_type, content, ttl, proxied))
        self._maybe_fail("update_record")
        record = DNSRecord(
            id=record_id, name=name, type=record_type, content=content, ttl=ttl, proxied=proxied
        )
        self._records[zone_id] = [
            record if r.id == record_id else r for r in self._records.get(zone_id, [])
        ]
        return record

    def stored(self, zone_id: str) -> List[DNSRecord]:
        return list(self._records.get(zone_id, []))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_provider() -> Callable[..., MockDNSProvider]:
    return MockDNSProvider


@pytest.fixture
def example_provider() -> MockDNSProvider:
    """Provider managing example.com as zone-1 with no records."""
    return MockDNSProvider(zones={"example.com": [Zone(id="zone-1", name="example.com")]})


@pytest.fixture
def scripted_input() -> Callable[[Iterable[str]], Callable[[str], str]]:
    """Build an input() replacement that replays lines, then raises EOFError."""

    def factory(lines: Iterable[str]) -> Callable[[str], str]:
        remaining = list(lines)

        def fake_input(prompt: str = "") -> str:
            if not remaining:
                raise EOFError
            return remaining.pop(0)

        return fake_input

    return factory


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Clear dns-set variables, run in an empty directory, and return the config dir."""
    for var in ENV_VARS:
        # setenv first so the variable is removed again on teardown even when
        # load_dotenv() sets it during the test
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)

    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    config_dir = tmp_path / "config"
    monkeypatch.setenv("DNS_SET_CONFIG_DIR", str(config_dir))
    return config_dir
