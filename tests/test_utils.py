"""Unit tests for helper functions in dns_set.cli.

Tests cover:
- Domain validation (is_valid_domain)
- Root domain reduction (extract_root_domain)
- TTL normalization (normalize_ttl)
- Address parsing and family checks (parse_address, check_address_family)
- Exclude pattern parsing (_parse_exclude_patterns, _is_domain_excluded)
- Boolean parsing (_parse_bool)
"""

import ipaddress
import re

import pytest

from dns_set.cli import (
    AUTO_TTL,
    RecordType,
    ValidationError,
    _is_domain_excluded,
    _parse_bool,
    _parse_exclude_patterns,
    check_address_family,
    extract_root_domain,
    is_valid_domain,
    normalize_ttl,
    parse_address,
)

# =============================================================================
# Domain Validation Tests
# =============================================================================


@pytest.mark.parametrize(
    "domain",
    ["example.com", "sub.example.com", "my-site.example.org", "test123.co.uk", "A1.Example.COM"],
)
def test_is_valid_domain_accepts(domain: str) -> None:
    assert is_valid_domain(domain) is True


@pytest.mark.parametrize(
    "domain",
    [
        "",
        ".",
        ".example.com",
        "example.com.",
        "example",
        "ex..ample.com",
        "example-.com",
        "-example.com",
        "example.c",
        "exa_mple.com",
        "exämple.com",
        "example.com\n",
        "*.example.com",
        "example.com:443",
    ],
)
def test_is_valid_domain_rejects(domain: str) -> None:
    assert is_valid_domain(domain) is False


def test_is_valid_domain_label_length_limit() -> None:
    """Labels may be 63 characters but not 64."""
    assert is_valid_domain("a" * 63 + ".com")
    assert not is_valid_domain("a" * 64 + ".com")


def test_is_valid_domain_total_length_limit() -> None:
    """Names longer than 253 characters are rejected even with valid labels."""
    label = "a" * 60
    name_253 = ".".join([label] * 4) + "." + "b" * 9  # 4*61 + 9 = 253
    assert len(name_253) == 253
    assert is_valid_domain(name_253)
    assert not is_valid_domain("c" + name_253)


# =============================================================================
# Root Domain Tests
# =============================================================================


@pytest.mark.parametrize(
    "domain,expected",
    [
        ("test.yyang.dev", "yyang.dev"),
        ("api.test.yyang.dev", "yyang.dev"),
        ("yyang.dev", "yyang.dev"),
        ("www.example.com", "example.com"),
        ("localhost", "localhost"),
    ],
)
def test_extract_root_domain(domain: str, expected: str) -> None:
    assert extract_root_domain(domain) == expected


# =============================================================================
# TTL Normalization Tests
# =============================================================================


def test_normalize_ttl_auto_values() -> None:
    """None, 0 and "auto" all map to the automatic TTL sentinel."""
    assert normalize_ttl(None) == AUTO_TTL
    assert normalize_ttl(0) == AUTO_TTL
    assert normalize_ttl("auto") == AUTO_TTL
    assert normalize_ttl(" AUTO ") == AUTO_TTL


def test_normalize_ttl_passes_positive_values_through() -> None:
    assert normalize_ttl(300) == 300
    assert normalize_ttl("600") == 600


def test_normalize_ttl_is_idempotent() -> None:
    for value in [None, 0, 1, 300, "auto", "120"]:
        once = normalize_ttl(value)
        assert normalize_ttl(once) == once


def test_normalize_ttl_uses_provider_sentinel() -> None:
    assert normalize_ttl(None, auto_ttl=0) == 0
    assert normalize_ttl(0, auto_ttl=0) == 0
    assert normalize_ttl(300, auto_ttl=0) == 300


@pytest.mark.parametrize("value", [-1, "soon", 1.5, True])
def test_normalize_ttl_rejects_invalid(value) -> None:
    with pytest.raises(ValidationError):
        normalize_ttl(value)


# =============================================================================
# Address Tests
# =============================================================================


def test_parse_address_returns_ip_objects() -> None:
    assert parse_address("93.184.216.34") == ipaddress.IPv4Address("93.184.216.34")
    assert parse_address(" 2606:4700:4700::1111 ") == ipaddress.IPv6Address("2606:4700:4700::1111")


def test_parse_address_strips_zone_index() -> None:
    assert parse_address("fe80::1%eth0") == ipaddress.IPv6Address("fe80::1")


def test_parse_address_rejects_garbage() -> None:
    with pytest.raises(ValidationError, match="Invalid IP address format"):
        parse_address("not-an-ip")


def test_parse_address_enforces_record_family() -> None:
    assert parse_address("93.184.216.34", RecordType.A).version == 4
    with pytest.raises(ValidationError):
        parse_address("93.184.216.34", RecordType.AAAA)
    with pytest.raises(ValidationError):
        parse_address("2606:4700:4700::1111", RecordType.A)


def test_check_address_family() -> None:
    check_address_family(RecordType.A, ipaddress.ip_address("93.184.216.34"))
    check_address_family(RecordType.AAAA, ipaddress.ip_address("2606:4700:4700::1111"))
    with pytest.raises(ValidationError, match="A record requires an IPv4 address"):
        check_address_family(RecordType.A, ipaddress.ip_address("2606:4700:4700::1111"))


# =============================================================================
# Exclude Pattern Parsing Tests
# =============================================================================


def test_parse_exclude_patterns_exact_wildcard_and_regex() -> None:
    """Patterns can be exact, wildcard (fnmatch), or regex (prefix ~)."""
    patterns = _parse_exclude_patterns("auth.example.com,*.internal.*,~^dev-\\d+\\.example\\.com$")
    assert all(isinstance(p, re.Pattern) for p in patterns)

    assert _is_domain_excluded("auth.example.com", patterns)
    assert _is_domain_excluded("service.internal.example.com", patterns)
    assert _is_domain_excluded("dev-42.example.com", patterns)

    assert not _is_domain_excluded("public.example.com", patterns)


def test_parse_exclude_patterns_empty_string() -> None:
    assert _parse_exclude_patterns("") == []


def test_parse_exclude_patterns_invalid_regex_skipped() -> None:
    """Invalid regex patterns are skipped, the rest still apply."""
    patterns = _parse_exclude_patterns("~[invalid,valid.example.com")
    assert len(patterns) == 1
    assert _is_domain_excluded("valid.example.com", patterns)


def test_is_domain_excluded_exact_match_is_anchored() -> None:
    patterns = _parse_exclude_patterns("Example.com")
    assert _is_domain_excluded("example.com", patterns)
    assert not _is_domain_excluded("sub.example.com", patterns)
    assert not _is_domain_excluded("example.com.other", patterns)


# =============================================================================
# Boolean Parsing Tests
# =============================================================================


def test_parse_bool_true_values() -> None:
    for val in ["true", "TRUE", "1", "yes", "y", "on", True]:
        assert _parse_bool(val) is True, f"Expected True for {val!r}"


def test_parse_bool_false_values() -> None:
    for val in ["false", "0", "no", "off", "maybe", False]:
        assert _parse_bool(val) is False, f"Expected False for {val!r}"


def test_parse_bool_default_for_none() -> None:
    assert _parse_bool(None) is False
    assert _parse_bool(None, default=True) is True
