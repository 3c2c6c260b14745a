#!/usr/bin/env python3
"""dns-set - Point DNS address records at the current public IP

Reads a list of domains from a domain source, detects the current IPv4/IPv6
address through an IP source, and creates or updates the matching A/AAAA
records on a DNS provider. Each invocation performs a single pass.

Supported DNS Providers:
    - cloudflare: Cloudflare DNS (API token with Zone:Read and DNS:Edit)

Domain Sources:
    - manual: one domain per line, empty line to finish
    - caddyfile: site addresses found in a Caddyfile

IP Sources:
    - interface: first public address on an up, non-loopback interface
    - api: external echo service (https://ip.sb)
    - manual: typed in at the prompt

Configuration file:

    $DNS_SET_CONFIG_DIR/config.yaml, falling back to
    $XDG_CONFIG_HOME/dns-set/config.yaml and ~/.config/dns-set/config.yaml.
    A different file can be passed with --config.

        cloudflare:
          api_token: "..."
        preferences:
          caddyfile_path: /etc/caddy/Caddyfile
          default_ttl: 300            # omit, 0 or "auto" for automatic TTL
          exclude_domains: "internal.example.com,*.lan.*"
          update_on_ttl_drift: false

    .env and .env.local files in the working directory and the config
    directory are loaded first; variables already set in the environment win.

Environment variables:

    CLOUDFLARE_API_TOKEN          Cloudflare API token
    DNS_PROVIDER                  DNS provider type (default: cloudflare)
    DNS_SET_CONFIG_DIR            Directory holding config.yaml
    DNS_SET_CADDYFILE_PATH        Default Caddyfile path (default: /etc/caddy/Caddyfile)
    DNS_SET_DEFAULT_TTL           TTL in seconds, 0 or "auto" for automatic
    DNS_SET_EXCLUDE_DOMAINS       Comma-separated patterns for domains to skip.
                                  Supports three formats:
                                    - Exact domain: "auth.example.com"
                                    - Wildcard (fnmatch-style): "*.internal.*", "dev-*"
                                    - Regex (prefix with ~): "~^staging-\\d+\\.example\\.com$"
    DNS_SET_UPDATE_ON_TTL_DRIFT   Also update records whose TTL differs (default: false)
    DNS_SET_LOG_LEVEL             DEBUG, INFO, WARNING, ERROR (default: WARNING)
"""

from __future__ import annotations

import argparse
import getpass
import ipaddress
import logging
import os
import re
import socket
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

import psutil
import requests
import yaml
from dotenv import load_dotenv

# =============================================================================
# Configuration
# =============================================================================

LOG_LEVEL = os.getenv("DNS_SET_LOG_LEVEL", "WARNING")

CONFIG_FILE_NAME = "config.yaml"
DEFAULT_CADDYFILE_PATH = "/etc/caddy/Caddyfile"
DEFAULT_DNS_PROVIDER = "cloudflare"

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"
PROVIDER_TIMEOUT_SECONDS = 10.0

IPV4_API_URL = "https://api-ipv4.ip.sb/ip"
IPV6_API_URL = "https://api-ipv6.ip.sb/ip"
IP_API_TIMEOUT_SECONDS = 10.0

# Cloudflare treats a TTL of 1 as "automatic"
AUTO_TTL = 1

MAX_PROMPT_ATTEMPTS = 5
MAX_MANUAL_DOMAINS = 256
MIN_API_TOKEN_LENGTH = 40

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.WARNING),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Exceptions
# =============================================================================


class DNSSetError(Exception):
    """Base class for all dns-set errors."""


class ValidationError(DNSSetError):
    """Malformed domain, address or TTL."""


class ConfigError(DNSSetError):
    """Configuration file missing, unreadable or invalid."""


class SourceExhausted(DNSSetError):
    """A domain or IP source produced nothing usable."""


class NoDomains(SourceExhausted):
    pass


class NoAddressFound(SourceExhausted):
    pass


class NoInput(SourceExhausted):
    pass


class InvalidResponse(SourceExhausted):
    """The external IP service answered with something that is not the requested address."""


class SourceReadError(SourceExhausted):
    pass


class ZoneNotFound(DNSSetError):
    def __init__(self, domain: str):
        super().__init__(f"no zone found for domain {domain}")
        self.domain = domain


class ProviderError(DNSSetError):
    """Base class for failures talking to a DNS provider."""


class TransportError(ProviderError):
    """Network or HTTP level failure."""


class AuthError(ProviderError):
    """Credential rejected by the remote API."""


class ProviderRejected(ProviderError):
    """Remote API refused the request (validation error, unknown zone, ...)."""


# =============================================================================
# Enums
# =============================================================================


class RecordType(Enum):
    """Address record types.

    A records carry IPv4 addresses, AAAA records carry IPv6 addresses.
    """

    A = "A"
    AAAA = "AAAA"

    @property
    def ip_version(self) -> int:
        return 4 if self is RecordType.A else 6

    @property
    def family_label(self) -> str:
        return f"IPv{self.ip_version}"


class OutcomeStatus(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Zone:
    """Provider-side grouping that owns the records of a registrable domain."""

    id: str
    name: str


@dataclass(frozen=True)
class DNSRecord:
    """An address record as currently stored by the provider."""

    id: str
    name: str
    type: RecordType
    content: str
    ttl: int
    proxied: bool = False


@dataclass(frozen=True)
class DesiredState:
    """What one (domain, record type) pair should look like after a pass.

    ``ttl`` is a positive number of seconds, or 0 / None / "auto" for the
    provider's automatic TTL.
    """

    domain: str
    record_type: RecordType
    address: Address
    ttl: Optional[Union[int, str]] = None
    proxied: bool = False

    def __post_init__(self) -> None:
        if not is_valid_domain(self.domain):
            raise ValidationError(f"Invalid domain format: {self.domain!r}")
        check_address_family(self.record_type, self.address)
        normalize_ttl(self.ttl)


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of reconciling one (domain, record type) pair."""

    domain: str
    record_type: RecordType
    status: OutcomeStatus
    address: str = ""
    proxied: bool = False
    updated: int = 0
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


# =============================================================================
# Utility Functions
# =============================================================================

DOMAIN_LABEL_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?")


def is_valid_domain(domain: str) -> bool:
    """Check a hostname against the domain grammar.

    At least two labels, each 1-63 characters of [A-Za-z0-9-] that do not
    start or end with a hyphen, a suffix of at least two characters, and at
    most 253 characters overall. Trailing dots are rejected.
    """
    if not domain or len(domain) > 253:
        return False

    labels = domain.split(".")
    if len(labels) < 2:
        return False

    for label in labels:
        if not DOMAIN_LABEL_RE.fullmatch(label):
            return False

    return len(labels[-1]) >= 2


def extract_root_domain(domain: str) -> str:
    """Reduce a (sub)domain to its registrable root.

    api.test.example.com -> example.com, example.com -> example.com
    """
    labels = domain.split(".")
    if len(labels) <= 2:
        return domain
    return ".".join(labels[-2:])


def normalize_ttl(ttl: Optional[Union[int, str]], auto_ttl: int = AUTO_TTL) -> int:
    """Translate a TTL setting into the value sent to the provider.

    None, 0 and "auto" become ``auto_ttl``; positive integers pass through.
    Applying it twice gives the same result as applying it once.
    """
    if ttl is None:
        return auto_ttl
    if isinstance(ttl, bool):
        raise ValidationError(f"Invalid TTL: {ttl!r}")

    if isinstance(ttl, str):
        text = ttl.strip().lower()
        if text in {"", "auto"}:
            return auto_ttl
        try:
            ttl = int(text)
        except ValueError:
            raise ValidationError(f"Invalid TTL: {ttl!r}") from None

    if not isinstance(ttl, int):
        raise ValidationError(f"Invalid TTL: {ttl!r}")
    if ttl < 0:
        raise ValidationError(f"TTL must not be negative, got {ttl}")
    if ttl == 0:
        return auto_ttl
    return ttl


def parse_address(value: str, record_type: Optional[RecordType] = None) -> Address:
    """Parse an IP literal, optionally requiring the family of ``record_type``.

    A zone index suffix (``fe80::1%eth0``) is dropped.
    """
    text = value.strip().split("%", 1)[0]
    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        raise ValidationError(f"Invalid IP address format: {value!r}") from None

    if record_type is not None:
        check_address_family(record_type, address)
    return address


def check_address_family(record_type: RecordType, address: Address) -> None:
    """Reject an IPv6 address for an A record or an IPv4 address for AAAA."""
    if address.version != record_type.ip_version:
        raise ValidationError(
            f"{record_type.value} record requires an {record_type.family_label} address, "
            f"got {address}"
        )


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_exclude_patterns(value: str) -> List[re.Pattern]:
    """Parse domain exclusion patterns (exact, wildcard or ~regex)."""
    patterns: List[re.Pattern] = []
    if not value:
        return patterns

    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item:
            continue

        try:
            if item.startswith("~"):
                patterns.append(re.compile(item[1:], re.IGNORECASE))
            elif "*" in item or "?" in item:
                regex_str = re.escape(item).replace(r"\*", ".*").replace(r"\?", ".")
                patterns.append(re.compile(f"^{regex_str}$", re.IGNORECASE))
            else:
                patterns.append(re.compile(f"^{re.escape(item)}$", re.IGNORECASE))
            logger.debug(f"Added exclusion pattern: {item}")
        except re.error as e:
            logger.warning(f"Invalid exclusion pattern '{item}': {e}")

    return patterns


def _is_domain_excluded(domain: str, patterns: List[re.Pattern]) -> bool:
    return any(pattern.search(domain) for pattern in patterns)


def _dedupe(items: Sequence[str]) -> List[str]:
    seen: Set[str] = set()
    result: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


# =============================================================================
# Configuration File
# =============================================================================


@dataclass
class Config:
    """Settings consumed by a run. Loaded from config.yaml, .env and the environment."""

    api_token: str = ""
    caddyfile_path: str = DEFAULT_CADDYFILE_PATH
    default_ttl: Optional[int] = None
    exclude_domains: str = ""
    update_on_ttl_drift: bool = False
    dns_provider: str = DEFAULT_DNS_PROVIDER


def get_config_dir() -> Path:
    custom_dir = os.getenv("DNS_SET_CONFIG_DIR", "").strip()
    if custom_dir:
        return Path(custom_dir)

    xdg_dir = os.getenv("XDG_CONFIG_HOME", "").strip()
    if xdg_dir:
        return Path(xdg_dir) / "dns-set"

    return Path.home() / ".config" / "dns-set"


def _load_env_files() -> None:
    config_dir = get_config_dir()
    candidates = [
        Path(".env"),
        Path(".env.local"),
        config_dir / ".env",
        config_dir / ".env.local",
    ]
    for path in candidates:
        if path.is_file():
            logger.debug(f"Loading environment from {path}")
            load_dotenv(path, override=False)


def _parse_ttl_setting(value: Any, source: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in {"", "auto"}:
        return None
    try:
        ttl = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid TTL in {source}: {value!r}") from None
    if ttl < 0:
        raise ConfigError(f"TTL in {source} must not be negative, got {ttl}")
    return ttl


def _join_patterns(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from .env files, config.yaml and environment variables.

    A missing default config file is not an error; a missing file passed
    explicitly is.
    """
    _load_env_files()

    path = Path(config_path) if config_path else get_config_dir() / CONFIG_FILE_NAME
    data: Dict[str, Any] = {}

    if path.is_file():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        logger.debug(f"Loaded config file {path}")
    elif config_path:
        raise ConfigError(f"Config file not found: {path}")

    cloudflare = data.get("cloudflare") or {}
    preferences = data.get("preferences") or {}
    if not isinstance(cloudflare, dict) or not isinstance(preferences, dict):
        raise ConfigError(f"Config file {path}: 'cloudflare' and 'preferences' must be mappings")

    config = Config(
        api_token=str(cloudflare.get("api_token") or "").strip(),
        caddyfile_path=str(preferences.get("caddyfile_path") or DEFAULT_CADDYFILE_PATH),
        default_ttl=_parse_ttl_setting(preferences.get("default_ttl"), str(path)),
        exclude_domains=_join_patterns(preferences.get("exclude_domains")),
        update_on_ttl_drift=_parse_bool(preferences.get("update_on_ttl_drift")),
        dns_provider=str(data.get("provider") or DEFAULT_DNS_PROVIDER).lower().strip(),
    )

    env = os.environ
    if env.get("CLOUDFLARE_API_TOKEN", "").strip():
        config.api_token = env["CLOUDFLARE_API_TOKEN"].strip()
    if env.get("DNS_SET_CADDYFILE_PATH", "").strip():
        config.caddyfile_path = env["DNS_SET_CADDYFILE_PATH"].strip()
    if "DNS_SET_DEFAULT_TTL" in env:
        config.default_ttl = _parse_ttl_setting(env["DNS_SET_DEFAULT_TTL"], "DNS_SET_DEFAULT_TTL")
    if "DNS_SET_EXCLUDE_DOMAINS" in env:
        config.exclude_domains = env["DNS_SET_EXCLUDE_DOMAINS"].strip()
    if "DNS_SET_UPDATE_ON_TTL_DRIFT" in env:
        config.update_on_ttl_drift = _parse_bool(env["DNS_SET_UPDATE_ON_TTL_DRIFT"])
    if env.get("DNS_PROVIDER", "").strip():
        config.dns_provider = env["DNS_PROVIDER"].lower().strip()

    return config


def save_config(config: Config, config_path: Optional[str] = None) -> Path:
    """Write the configuration as YAML, readable by the owner only."""
    path = Path(config_path) if config_path else get_config_dir() / CONFIG_FILE_NAME
    data = {
        "provider": config.dns_provider,
        "cloudflare": {"api_token": config.api_token},
        "preferences": {
            "caddyfile_path": config.caddyfile_path,
            "default_ttl": config.default_ttl,
            "exclude_domains": config.exclude_domains,
            "update_on_ttl_drift": config.update_on_ttl_drift,
        },
    }

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(yaml.safe_dump(data, sort_keys=False), "utf-8")
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
    except OSError as e:
        raise ConfigError(f"Failed to write config file {path}: {e}") from e

    logger.info(f"Saved configuration to {path}")
    return path


# =============================================================================
# DNS Provider Interface and Implementations
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers.

    Every method may raise TransportError, AuthError or ProviderRejected.
    """

    # TTL value the provider interprets as "automatic"
    auto_ttl: int = AUTO_TTL
    # Whether records carry a meaningful proxied flag
    supports_proxy: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for display."""
        pass

    @abstractmethod
    def find_zones(self, root_domain: str) -> List[Zone]:
        """Return the zones matching a registrable root domain."""
        pass

    @abstractmethod
    def list_records(
        self, zone_id: str, name: str, record_type: Optional[RecordType] = None
    ) -> List[DNSRecord]:
        """List address records named ``name``, optionally of one type only."""
        pass

    @abstractmethod
    def create_record(
        self,
        zone_id: str,
        name: str,
        record_type: RecordType,
        content: str,
        ttl: int,
        proxied: bool = False,
    ) -> DNSRecord:
        pass

    @abstractmethod
    def update_record(
        self,
        zone_id: str,
        record_id: str,
        name: str,
        record_type: RecordType,
        content: str,
        ttl: int,
        proxied: bool = False,
    ) -> DNSRecord:
        pass


class CloudflareDNSProvider(DNSProvider):
    """Cloudflare DNS provider implementation (API v4, bearer token)."""

    supports_proxy = True

    def __init__(
        self,
        api_token: str,
        base_url: str = CLOUDFLARE_API_URL,
        timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS,
    ):
        if not api_token:
            raise AuthError("Cloudflare API token is empty")
        self._url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            }
        )

    @property
    def name(self) -> str:
        return "Cloudflare"

    def find_zones(self, root_domain: str) -> List[Zone]:
        result = self._request("GET", "/zones", params={"name": root_domain})
        zones: List[Zone] = []
        for item in result or []:
            if not isinstance(item, dict) or not item.get("id"):
                logger.warning(f"Skipping malformed zone: {item}")
                continue
            zones.append(Zone(id=str(item["id"]), name=str(item.get("name") or "")))
        logger.debug(f"Found {len(zones)} zone(s) for {root_domain}")
        return zones

    def list_records(
        self, zone_id: str, name: str, record_type: Optional[RecordType] = None
    ) -> List[DNSRecord]:
        params: Dict[str, Any] = {"name": name, "per_page": 100}
        if record_type is not None:
            params["type"] = record_type.value

        result = self._request("GET", f"/zones/{zone_id}/dns_records", params=params)
        records: List[DNSRecord] = []
        for item in result or []:
            record = self._parse_record(item)
            if record is not None:
                records.append(record)
        return records

    def create_record(
        self,
        zone_id: str,
        name: str,
        record_type: RecordType,
        content: str,
        ttl: int,
        proxied: bool = False,
    ) -> DNSRecord:
        body = self._record_body(name, record_type, content, ttl, proxied)
        result = self._request("POST", f"/zones/{zone_id}/dns_records", json_body=body)
        logger.info(f"Created {record_type.value} record: {name} -> {content}")
        return self._parse_record(result) or self._fallback_record("", body)

    def update_record(
        self,
        zone_id: str,
        record_id: str,
        name: str,
        record_type: RecordType,
        content: str,
        ttl: int,
        proxied: bool = False,
    ) -> DNSRecord:
        body = self._record_body(name, record_type, content, ttl, proxied)
        result = self._request(
            "PUT", f"/zones/{zone_id}/dns_records/{record_id}", json_body=body
        )
        logger.info(f"Updated {record_type.value} record {record_id}: {name} -> {content}")
        return self._parse_record(result) or self._fallback_record(record_id, body)

    def _record_body(
        self, name: str, record_type: RecordType, content: str, ttl: int, proxied: bool
    ) -> Dict[str, Any]:
        return {
            "type": record_type.value,
            "name": name,
            "content": content,
            "ttl": ttl,
            "proxied": proxied,
        }

    def _fallback_record(self, record_id: str, body: Dict[str, Any]) -> DNSRecord:
        return DNSRecord(
            id=record_id,
            name=body["name"],
            type=RecordType(body["type"]),
            content=body["content"],
            ttl=body["ttl"],
            proxied=body["proxied"],
        )

    def _parse_record(self, item: Any) -> Optional[DNSRecord]:
        if not isinstance(item, dict):
            return None
        try:
            record_type = RecordType(item.get("type"))
        except ValueError:
            # not an address record
            return None
        try:
            return DNSRecord(
                id=str(item["id"]),
                name=str(item["name"]),
                type=record_type,
                content=str(item["content"]),
                ttl=int(item.get("ttl") or AUTO_TTL),
                proxied=bool(item.get("proxied") or False),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Skipping malformed record: {item}")
            return None

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self._url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=json_body, timeout=self._timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        logger.debug(f"{method} {url} - Status: {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code in (401, 403):
            raise AuthError(
                f"{self.name} rejected the API token ({response.status_code}): "
                f"{_cloudflare_errors(payload) or response.text}"
            )

        success = isinstance(payload, dict) and payload.get("success") is True
        if not 200 <= response.status_code < 300 or not success:
            raise ProviderRejected(
                f"{self.name} API error ({response.status_code}): "
                f"{_cloudflare_errors(payload) or response.text}"
            )

        return payload.get("result")


def _cloudflare_errors(payload: Any) -> str:
    """Join the messages of a Cloudflare error envelope."""
    if not isinstance(payload, dict):
        return ""
    messages = []
    for error in payload.get("errors") or []:
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message") or ""
            messages.append(f"[{code}] {message}" if code else message)
        else:
            messages.append(str(error))
    return "; ".join(m for m in messages if m)


# =============================================================================
# Provider Registry
# =============================================================================


def create_dns_provider(provider_name: str, api_token: str) -> DNSProvider:
    """Factory function to create the configured DNS provider."""
    if provider_name == "cloudflare":
        return CloudflareDNSProvider(api_token)
    raise ConfigError(
        f"Unsupported DNS provider: '{provider_name}'. Supported providers: cloudflare"
    )


# =============================================================================
# Zone Resolution and Record Reconciliation
# =============================================================================


class ZoneResolver:
    """Maps a domain to the provider zone that manages it."""

    def __init__(self, provider: DNSProvider):
        self._provider = provider

    def resolve(self, domain: str) -> str:
        """Return the zone ID for ``domain``.

        The provider is queried with the registrable root, never the full
        subdomain. When several zones match, a zone named exactly like the
        root is preferred and remaining ties go to the smallest zone ID.
        """
        root = extract_root_domain(domain)
        zones = self._provider.find_zones(root)
        if not zones:
            raise ZoneNotFound(domain)
        if len(zones) == 1:
            return zones[0].id

        exact = [z for z in zones if z.name.lower() == root.lower()]
        candidates = exact or zones
        chosen = min(candidates, key=lambda z: z.id)
        if len(candidates) > 1:
            logger.warning(
                f"{len(candidates)} zones match '{root}' "
                f"({', '.join(sorted(z.id for z in candidates))}); using {chosen.id}"
            )
        return chosen.id


class RecordReconciler:
    """Creates or updates the address records of one (domain, type) pair."""

    def __init__(
        self,
        provider: DNSProvider,
        *,
        zone_resolver: Optional[ZoneResolver] = None,
        update_on_ttl_drift: bool = False,
    ):
        self.provider = provider
        self.zone_resolver = zone_resolver or ZoneResolver(provider)
        self.update_on_ttl_drift = update_on_ttl_drift

    def reconcile(self, desired: DesiredState) -> ReconcileOutcome:
        """Bring the remote records in line with ``desired``.

        Provider and zone errors are returned as a FAILED outcome instead of
        raised, so one failing pair never stops the others.
        """
        try:
            return self._reconcile(desired)
        except DNSSetError as e:
            logger.error(
                f"Failed to reconcile {desired.record_type.value} record for {desired.domain}: {e}"
            )
            return ReconcileOutcome(
                domain=desired.domain,
                record_type=desired.record_type,
                status=OutcomeStatus.FAILED,
                address=str(desired.address),
                proxied=desired.proxied,
                reason=str(e),
            )

    def _reconcile(self, desired: DesiredState) -> ReconcileOutcome:
        zone_id = self.zone_resolver.resolve(desired.domain)
        existing = self.provider.list_records(zone_id, desired.domain, desired.record_type)
        ttl = normalize_ttl(desired.ttl, self.provider.auto_ttl)
        content = str(desired.address)

        def outcome(status: OutcomeStatus, updated: int = 0) -> ReconcileOutcome:
            return ReconcileOutcome(
                domain=desired.domain,
                record_type=desired.record_type,
                status=status,
                address=content,
                proxied=desired.proxied,
                updated=updated,
            )

        if not existing:
            logger.info(f"Adding {desired.record_type.value} record {desired.domain} -> {content}")
            self.provider.create_record(
                zone_id, desired.domain, desired.record_type, content, ttl, desired.proxied
            )
            return outcome(OutcomeStatus.CREATED)

        updated = 0
        for record in existing:
            if self._matches(record, desired, ttl):
                logger.debug(f"Record {record.id} for {desired.domain} already up to date")
                continue
            logger.info(
                f"Updating {desired.record_type.value} record {desired.domain}: "
                f"{record.content} -> {content}"
            )
            self.provider.update_record(
                zone_id,
                record.id,
                desired.domain,
                desired.record_type,
                content,
                ttl,
                desired.proxied,
            )
            updated += 1

        if updated:
            return outcome(OutcomeStatus.UPDATED, updated)
        return outcome(OutcomeStatus.UNCHANGED)

    def _matches(self, record: DNSRecord, desired: DesiredState, ttl: int) -> bool:
        try:
            same_address = ipaddress.ip_address(record.content) == desired.address
        except ValueError:
            same_address = False
        if not same_address:
            return False
        if self.provider.supports_proxy and record.proxied != desired.proxied:
            return False
        if self.update_on_ttl_drift:
            return normalize_ttl(record.ttl, self.provider.auto_ttl) == ttl
        return True


def list_address_records(
    provider: DNSProvider, domain: str, zone_resolver: Optional[ZoneResolver] = None
) -> List[DNSRecord]:
    """Return every A and AAAA record stored for ``domain``."""
    resolver = zone_resolver or ZoneResolver(provider)
    zone_id = resolver.resolve(domain)
    records = provider.list_records(zone_id, domain)
    return sorted(records, key=lambda r: (r.type.value, r.content))


# =============================================================================
# IP Source Interface and Implementations
# =============================================================================


class IPSource(ABC):
    """Abstract base class for ways of finding the address to publish."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def get_ipv4(self) -> ipaddress.IPv4Address:
        pass

    @abstractmethod
    def get_ipv6(self) -> ipaddress.IPv6Address:
        pass

    def get_address(self, record_type: RecordType) -> Address:
        if record_type is RecordType.A:
            return self.get_ipv4()
        return self.get_ipv6()


def _is_publishable(address: Address) -> bool:
    return not (address.is_loopback or address.is_private or address.is_link_local)


class InterfaceIPSource(IPSource):
    """First public address found on an up, non-loopback network interface."""

    @property
    def name(self) -> str:
        return "Network Interface"

    def get_ipv4(self) -> ipaddress.IPv4Address:
        return self._find(RecordType.A)  # type: ignore[return-value]

    def get_ipv6(self) -> ipaddress.IPv6Address:
        return self._find(RecordType.AAAA)  # type: ignore[return-value]

    def _find(self, record_type: RecordType) -> Address:
        family = socket.AF_INET if record_type is RecordType.A else socket.AF_INET6
        try:
            interfaces = psutil.net_if_addrs()
            stats = psutil.net_if_stats()
        except OSError as e:
            raise NoAddressFound(f"failed to get network interfaces: {e}") from e

        for iface_name, iface_addrs in interfaces.items():
            iface_stats = stats.get(iface_name)
            if iface_stats is None or not iface_stats.isup:
                continue
            if "loopback" in str(getattr(iface_stats, "flags", "")).split(","):
                continue

            for addr in iface_addrs:
                if addr.family != family:
                    continue
                try:
                    address = parse_address(addr.address, record_type)
                except ValidationError:
                    continue
                if _is_publishable(address):
                    logger.debug(f"Using {address} from interface {iface_name}")
                    return address

        raise NoAddressFound(f"no public {record_type.family_label} address found")


class APIIPSource(IPSource):
    """Asks an external echo service which address our requests come from."""

    def __init__(
        self,
        ipv4_url: str = IPV4_API_URL,
        ipv6_url: str = IPV6_API_URL,
        timeout_seconds: float = IP_API_TIMEOUT_SECONDS,
    ):
        self._urls = {RecordType.A: ipv4_url, RecordType.AAAA: ipv6_url}
        self._timeout = min(timeout_seconds, IP_API_TIMEOUT_SECONDS)
        self._session = requests.Session()

    @property
    def name(self) -> str:
        return "External API (ip.sb)"

    def get_ipv4(self) -> ipaddress.IPv4Address:
        return self._fetch(RecordType.A)  # type: ignore[return-value]

    def get_ipv6(self) -> ipaddress.IPv6Address:
        return self._fetch(RecordType.AAAA)  # type: ignore[return-value]

    def _fetch(self, record_type: RecordType) -> Address:
        url = self._urls[record_type]
        label = record_type.family_label
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"failed to get {label} from API: {e}") from e

        if response.status_code != 200:
            raise InvalidResponse(f"API returned status {response.status_code}")

        text = response.text.strip()
        try:
            address = ipaddress.ip_address(text)
        except ValueError:
            raise InvalidResponse(f"invalid IP address received: {text!r}") from None

        if address.version != record_type.ip_version:
            raise InvalidResponse(f"received non-{label} address: {text}")
        return address


class ManualIPSource(IPSource):
    """Reads the address from the operator."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
        max_attempts: int = MAX_PROMPT_ATTEMPTS,
    ):
        self._input = input_func
        self._output = output_func
        self._max_attempts = max_attempts

    @property
    def name(self) -> str:
        return "Manual Input"

    def get_ipv4(self) -> ipaddress.IPv4Address:
        return self._prompt(RecordType.A)  # type: ignore[return-value]

    def get_ipv6(self) -> ipaddress.IPv6Address:
        return self._prompt(RecordType.AAAA)  # type: ignore[return-value]

    def _prompt(self, record_type: RecordType) -> Address:
        label = record_type.family_label
        for _ in range(self._max_attempts):
            try:
                text = self._input(f"Enter {label} address: ").strip()
            except EOFError:
                raise NoInput(f"no {label} address provided") from None
            if not text:
                raise NoInput(f"no {label} address provided")

            try:
                address = ipaddress.ip_address(text)
            except ValueError:
                self._output(f"Invalid IP address format: {text}")
                continue

            if address.version != record_type.ip_version:
                self._output(f"Please enter a valid {label} address, got: {text}")
                continue
            return address

        raise NoInput(f"no valid {label} address after {self._max_attempts} attempts")


# =============================================================================
# Domain Source Interface and Implementations
# =============================================================================


class DomainSource(ABC):
    """Abstract base class for domain sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def get_domains(self) -> List[str]:
        """Return the candidate domains, without duplicates."""
        pass


class ManualDomainSource(DomainSource):
    """Domains typed in one per line; an empty line or EOF ends the list."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
        max_lines: int = MAX_MANUAL_DOMAINS,
    ):
        self._input = input_func
        self._output = output_func
        self._max_lines = max_lines

    @property
    def name(self) -> str:
        return "Manual Input"

    def get_domains(self) -> List[str]:
        self._output("Enter domains (one per line, empty line to finish):")
        domains: List[str] = []

        for _ in range(self._max_lines):
            try:
                line = self._input("> ").strip()
            except EOFError:
                break
            if not line:
                break
            if is_valid_domain(line):
                domains.append(line)
            else:
                logger.warning(f"Ignoring invalid domain: {line}")

        if not domains:
            raise NoDomains("no valid domains provided")
        return _dedupe(domains)


class CaddyfileDomainSource(DomainSource):
    """Site addresses declared in a Caddyfile."""

    # Directive keywords that can sit in front of a "{" without being a site
    DIRECTIVES = frozenset(
        {
            "root",
            "respond",
            "reverse_proxy",
            "proxy",
            "file_server",
            "encode",
            "header",
            "rewrite",
            "uri",
            "try_files",
            "basicauth",
            "request_header",
            "import",
            "log",
            "tls",
            "backend",
        }
    )
    SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)

    def __init__(self, path: str):
        self._path = path

    @property
    def name(self) -> str:
        return f"Caddyfile ({self._path})"

    def get_domains(self) -> List[str]:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise SourceReadError(f"failed to open Caddyfile at {self._path}: {e}") from e

        domains: Set[str] = set()
        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if "{" in line:
                line = line.split("{", 1)[0]

            for token in line.split():
                hostname = self._site_hostname(token)
                if hostname:
                    domains.add(hostname)

        if not domains:
            raise NoDomains(f"no valid domains found in Caddyfile {self._path}")

        logger.debug(f"Found {len(domains)} domain(s) in {self._path}")
        return sorted(domains)

    def _site_hostname(self, token: str) -> Optional[str]:
        token = token.strip().rstrip(",")
        if not token or token.startswith(":"):
            return None
        token = self.SCHEME_RE.sub("", token)
        hostname = token.split("/", 1)[0].split(":", 1)[0]
        if "*" in hostname or hostname in self.DIRECTIVES:
            return None
        return hostname if is_valid_domain(hostname) else None


# =============================================================================
# Core Runner
# =============================================================================


class DNSSetRunner:
    """Drives one pass: every selected domain times every selected record type."""

    def __init__(
        self,
        *,
        reconciler: RecordReconciler,
        exclude_patterns: Optional[List[re.Pattern]] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.reconciler = reconciler
        self.exclude_patterns = exclude_patterns or []
        self._notify = notify or (lambda _message: None)

    def collect_domains(self, source: DomainSource) -> List[str]:
        domains = source.get_domains()
        kept = [d for d in domains if not _is_domain_excluded(d, self.exclude_patterns)]
        excluded = len(domains) - len(kept)
        if excluded:
            logger.info(f"Excluded {excluded} domain(s) from {source.name}")
        if not kept:
            raise NoDomains(f"all domains from {source.name} are excluded")
        logger.info(f"{source.name}: {len(kept)} domain(s)")
        return kept

    def run(
        self,
        domains: Sequence[str],
        ip_source: IPSource,
        record_types: Sequence[RecordType],
        *,
        proxied: bool = False,
        ttl: Optional[Union[int, str]] = None,
    ) -> List[ReconcileOutcome]:
        outcomes: List[ReconcileOutcome] = []

        for record_type in record_types:
            try:
                address = ip_source.get_address(record_type)
                check_address_family(record_type, address)
            except DNSSetError as e:
                message = f"Failed to get {record_type.value} address from {ip_source.name}: {e}"
                logger.error(message)
                self._notify(message)
                outcomes.extend(
                    ReconcileOutcome(
                        domain=domain,
                        record_type=record_type,
                        status=OutcomeStatus.FAILED,
                        proxied=proxied,
                        reason=str(e),
                    )
                    for domain in domains
                )
                continue

            self._notify(f"Detected {record_type.value} address: {address}")

            for domain in domains:
                self._notify(f"Updating {record_type.value} record for {domain}...")
                try:
                    desired = DesiredState(
                        domain=domain,
                        record_type=record_type,
                        address=address,
                        ttl=ttl,
                        proxied=proxied,
                    )
                except ValidationError as e:
                    logger.error(f"Skipping {domain}: {e}")
                    outcome = ReconcileOutcome(
                        domain=domain,
                        record_type=record_type,
                        status=OutcomeStatus.FAILED,
                        address=str(address),
                        proxied=proxied,
                        reason=str(e),
                    )
                else:
                    outcome = self.reconciler.reconcile(desired)
                self._notify(describe_outcome(outcome))
                outcomes.append(outcome)

        return outcomes


def describe_outcome(outcome: ReconcileOutcome) -> str:
    record = f"{outcome.record_type.value} record for {outcome.domain}"
    proxy_status = "Proxied" if outcome.proxied else "DNS only"
    if outcome.status is OutcomeStatus.CREATED:
        return f"Created {record} -> {outcome.address} ({proxy_status})"
    if outcome.status is OutcomeStatus.UPDATED:
        return f"Updated {record} -> {outcome.address} ({outcome.updated} changed, {proxy_status})"
    if outcome.status is OutcomeStatus.UNCHANGED:
        return f"{record} already up to date ({proxy_status})"
    return f"Failed to update {record}: {outcome.reason}"


# =============================================================================
# Interactive Prompts
# =============================================================================


class InteractiveCLI:
    """Numbered-choice prompts that select the sources and options of a run."""

    def __init__(
        self,
        config: Config,
        provider: Optional[DNSProvider] = None,
        *,
        input_func: Callable[[str], str] = input,
        password_func: Callable[[str], str] = getpass.getpass,
        output_func: Callable[[str], None] = print,
        max_attempts: int = MAX_PROMPT_ATTEMPTS,
    ):
        self.config = config
        self.provider = provider
        self._input = input_func
        self._password = password_func
        self._output = output_func
        self._max_attempts = max_attempts

    def run(self) -> List[ReconcileOutcome]:
        if self.provider is None:
            raise ConfigError("No DNS provider configured")

        self._output(f"=== DNS Setter - {self.provider.name} Provider ===\n")

        runner = DNSSetRunner(
            reconciler=RecordReconciler(
                self.provider, update_on_ttl_drift=self.config.update_on_ttl_drift
            ),
            exclude_patterns=_parse_exclude_patterns(self.config.exclude_domains),
            notify=self._output,
        )

        domain_source = self.select_domain_source()
        domains = self.select_domains(runner.collect_domains(domain_source))
        ip_source = self.select_ip_source()
        record_types = self.select_record_types()
        proxied = self.select_proxy_status()

        outcomes = runner.run(
            domains,
            ip_source,
            record_types,
            proxied=proxied,
            ttl=self.config.default_ttl,
        )
        self._output("\nDNS update completed!")
        return outcomes

    def select_domain_source(self) -> DomainSource:
        self._output("Select domain source:")
        self._output("1. Manual input")
        self._output("2. Caddyfile")

        choice = self.prompt_choice("Enter choice (1-2): ", 1, 2)
        if choice == 1:
            return ManualDomainSource(input_func=self._input, output_func=self._output)
        return CaddyfileDomainSource(self.prompt_caddyfile_path(self.config.caddyfile_path))

    def select_domains(self, domains: List[str]) -> List[str]:
        if len(domains) == 1:
            self._output(f"Found domain: {domains[0]}")
            return list(domains)

        self._output(f"\nFound {len(domains)} domains:")
        for i, domain in enumerate(domains, start=1):
            self._output(f"{i}. {domain}")

        for _ in range(self._max_attempts):
            text = self._read("Select domains to update (comma-separated numbers, or 'all'): ")
            if text.lower() == "all":
                return list(domains)
            try:
                return self._parse_selection(text, domains)
            except ValidationError as e:
                self._output(str(e))

        raise NoInput("no valid domain selection")

    def _parse_selection(self, text: str, domains: List[str]) -> List[str]:
        selected: List[str] = []
        for part in text.split(","):
            part = part.strip()
            try:
                index = int(part)
            except ValueError:
                raise ValidationError(f"Invalid selection: {part!r}") from None
            if index < 1 or index > len(domains):
                raise ValidationError(f"Invalid selection: {part!r}")
            selected.append(domains[index - 1])
        return _dedupe(selected)

    def select_ip_source(self) -> IPSource:
        self._output("\nSelect IP detection method:")
        self._output("1. Network interface")
        self._output("2. External API (ip.sb)")
        self._output("3. Manual input")

        choice = self.prompt_choice("Enter choice (1-3): ", 1, 3)
        if choice == 1:
            return InterfaceIPSource()
        if choice == 2:
            return APIIPSource()
        return ManualIPSource(input_func=self._input, output_func=self._output)

    def select_record_types(self) -> List[RecordType]:
        self._output("\nSelect record types to update:")
        self._output("1. IPv4 (A) only")
        self._output("2. IPv6 (AAAA) only")
        self._output("3. Both IPv4 and IPv6")

        choice = self.prompt_choice("Enter choice (1-3): ", 1, 3)
        if choice == 1:
            return [RecordType.A]
        if choice == 2:
            return [RecordType.AAAA]
        return [RecordType.A, RecordType.AAAA]

    def select_proxy_status(self) -> bool:
        if self.provider is not None and not self.provider.supports_proxy:
            return False

        self._output("\nSelect proxy status:")
        self._output("1. DNS only (grey cloud)")
        self._output("2. Proxied (orange cloud)")

        return self.prompt_choice("Enter choice (1-2): ", 1, 2) == 2

    def prompt_choice(self, prompt: str, low: int, high: int) -> int:
        for _ in range(self._max_attempts):
            text = self._read(prompt)
            try:
                choice = int(text)
            except ValueError:
                choice = None
            if choice is not None and low <= choice <= high:
                return choice
            self._output(f"Please enter a number between {low} and {high}")

        raise NoInput(f"no valid choice after {self._max_attempts} attempts")

    def prompt_caddyfile_path(self, default_path: str) -> str:
        if Path(default_path).is_file():
            return default_path

        self._output(f"Caddyfile not found at {default_path}")
        text = self._read("Please enter Caddyfile path (absolute or relative to current directory): ")
        if not text:
            raise NoInput("no Caddyfile path provided")

        resolved = Path(text).expanduser()
        if not resolved.is_absolute():
            resolved = Path.cwd() / resolved
        if not resolved.is_file():
            raise SourceReadError(f"Caddyfile not found at {resolved}")

        self._output(f"Using Caddyfile: {resolved}")
        return str(resolved)

    def prompt_and_save_api_token(self, config_path: Optional[str] = None) -> str:
        """Ask for the Cloudflare token without echo and store it in the config file."""
        self._output("\n=== Cloudflare API Token Required ===")
        self._output("You can create one at: https://dash.cloudflare.com/profile/api-tokens")
        self._output("The token needs the following permissions:")
        self._output("  - Zone:Read")
        self._output("  - DNS:Edit")

        try:
            token = self._password("\nPlease enter your Cloudflare API token (input will be hidden): ")
        except EOFError:
            raise NoInput("failed to read API token") from None
        token = token.strip()
        if not token:
            raise ValidationError("API token cannot be empty")

        if len(token) < MIN_API_TOKEN_LENGTH:
            self._output(
                "Warning: The entered token seems too short. "
                f"Cloudflare API tokens are typically {MIN_API_TOKEN_LENGTH}+ characters."
            )
            answer = self._read("Do you want to continue anyway? (y/N): ").lower()
            if answer not in {"y", "yes"}:
                raise ValidationError("API token setup cancelled")

        self.config.api_token = token
        save_config(self.config, config_path)
        self._output("✓ API token saved to configuration file")
        return token

    def _read(self, prompt: str) -> str:
        try:
            return self._input(prompt).strip()
        except EOFError:
            raise NoInput("failed to read input") from None


# =============================================================================
# Main
# =============================================================================


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dns-set",
        description="Point A/AAAA records on your DNS provider at the current IP address.",
    )
    parser.add_argument("-c", "--config", help="Config file path")
    parser.add_argument("--log-level", help="Override log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument(
        "--list",
        metavar="DOMAIN",
        help="Show the A/AAAA records currently stored for DOMAIN and exit",
    )
    return parser


def _print_records(provider: DNSProvider, domain: str) -> None:
    if not is_valid_domain(domain):
        raise ValidationError(f"Invalid domain format: {domain!r}")
    records = list_address_records(provider, domain)
    if not records:
        print(f"No A/AAAA records found for {domain}")
        return
    for record in records:
        ttl = "auto" if record.ttl == provider.auto_ttl else str(record.ttl)
        proxy_status = "Proxied" if record.proxied else "DNS only"
        print(f"{record.type.value:<5} {record.name} -> {record.content} (ttl {ttl}, {proxy_status})")


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level.upper(), logging.WARNING))

    try:
        config = load_config(args.config)

        if not config.api_token:
            InteractiveCLI(config).prompt_and_save_api_token(args.config)
            config = load_config(args.config)

        provider = create_dns_provider(config.dns_provider, config.api_token)

        if args.list:
            _print_records(provider, args.list)
            return

        outcomes = InteractiveCLI(config, provider).run()

    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(130)
    except DNSSetError as e:
        logger.debug("Run aborted", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    failed = [o for o in outcomes if not o.ok]
    if failed:
        print(f"{len(failed)} of {len(outcomes)} update(s) failed", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
