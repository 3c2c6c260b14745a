"""Unit tests for CaddyfileDomainSource."""

from pathlib import Path

import pytest

from dns_set.cli import CaddyfileDomainSource, NoDomains, SourceReadError


def write_caddyfile(tmp_path: Path, content: str) -> str:
    path = tmp_path / "Caddyfile"
    path.write_text(content)
    return str(path)


def test_simple_sites(tmp_path: Path) -> None:
    path = write_caddyfile(
        tmp_path,
        """
example.com {
    reverse_proxy localhost:8080
}

api.example.com {
    root * /srv/www
    file_server
}
""",
    )

    assert CaddyfileDomainSource(path).get_domains() == ["api.example.com", "example.com"]


def test_ports_and_port_only_addresses(tmp_path: Path) -> None:
    path = write_caddyfile(
        tmp_path,
        """
app.example.com:8443 {
    respond "ok"
}

:80 {
    respond "catch all"
}
""",
    )

    assert CaddyfileDomainSource(path).get_domains() == ["app.example.com"]


def test_only_port_addresses_raise_no_domains(tmp_path: Path) -> None:
    path = write_caddyfile(tmp_path, ":80 {\n    respond \"hi\"\n}\n:443 {\n}\n")

    with pytest.raises(NoDomains):
        CaddyfileDomainSource(path).get_domains()


def test_wildcards_and_comments_are_skipped(tmp_path: Path) -> None:
    path = write_caddyfile(
        tmp_path,
        """
# old.example.com {
*.example.com {
    tls internal
}
www.example.com {
}
""",
    )

    assert CaddyfileDomainSource(path).get_domains() == ["www.example.com"]


def test_scheme_path_and_address_lists(tmp_path: Path) -> None:
    path = write_caddyfile(
        tmp_path,
        """
https://secure.example.com, http://plain.example.com/path {
    encode gzip
}
a.example.org b.example.org {
}
""",
    )

    assert CaddyfileDomainSource(path).get_domains() == [
        "a.example.org",
        "b.example.org",
        "plain.example.com",
        "secure.example.com",
    ]


def test_duplicate_sites_are_returned_once(tmp_path: Path) -> None:
    path = write_caddyfile(
        tmp_path,
        "example.com {\n}\nexample.com:8080 {\n}\nhttps://example.com {\n}\n",
    )

    assert CaddyfileDomainSource(path).get_domains() == ["example.com"]


def test_directives_and_invalid_hosts_are_not_sites(tmp_path: Path) -> None:
    path = write_caddyfile(
        tmp_path,
        """
localhost {
    header {
        X-Frame-Options DENY
    }
    log {
        output stdout
    }
}
site.example.net {
}
""",
    )

    assert CaddyfileDomainSource(path).get_domains() == ["site.example.net"]


def test_missing_file_raises_source_read_error(tmp_path: Path) -> None:
    source = CaddyfileDomainSource(str(tmp_path / "missing"))

    with pytest.raises(SourceReadError, match="failed to open Caddyfile"):
        source.get_domains()


def test_name_includes_path() -> None:
    assert CaddyfileDomainSource("/etc/caddy/Caddyfile").name == "Caddyfile (/etc/caddy/Caddyfile)"
