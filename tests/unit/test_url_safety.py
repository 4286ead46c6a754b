"""Tests for URL normalization and SSRF blocking."""

import asyncio
import socket

import pytest

from chat_browser.config import SEARCH_URL, BrowserSettings
from chat_browser.errors import (
    BlockedHost,
    DomainNotAllowed,
    InvalidURL,
    SchemeNotAllowed,
    TooLong,
    ValidationError,
)
from chat_browser.url_safety import (
    UrlValidator,
    is_blocked_address,
    is_domain_allowed,
    normalize_url,
    resolve_host,
    search_or_url,
)


async def echo_resolver(hostname: str) -> list[str]:
    """Treat the hostname as its own address (for IP literals)."""
    return [hostname]


def make_validator(resolver=echo_resolver, **overrides) -> UrlValidator:
    return UrlValidator(BrowserSettings(**overrides), resolver=resolver)


@pytest.mark.unit
class TestBlockedAddresses:
    @pytest.mark.parametrize("address", [
        "10.1.2.3",
        "127.0.0.1",
        "127.255.0.9",
        "0.0.0.0",
        "192.168.1.1",
        "172.16.0.1",
        "172.31.255.254",
        "169.254.169.254",
        "::1",
        "::",
        "fd00::1",
        "fe80::1%eth0",
        "::ffff:127.0.0.1",
        "::ffff:10.0.0.5",
        "::7f00:1",
        "100.64.0.1",
        "224.0.0.251",
        "240.0.0.1",
        "ff02::1",
        "2002:c0a8:101::1",
        "64:ff9b::a00:1",
        "not-an-ip",
    ])
    def test_blocked(self, address):
        assert is_blocked_address(address) is True

    @pytest.mark.parametrize("address", [
        "8.8.8.8",
        "93.184.216.34",
        "172.32.0.1",
        "2606:4700::1111",
        "::ffff:8.8.8.8",
        "2002:808:808::1",
        "64:ff9b::808:808",
    ])
    def test_public(self, address):
        assert is_blocked_address(address) is False


@pytest.mark.unit
class TestDomainAllowList:
    def test_empty_list_allows_everything(self):
        assert is_domain_allowed("anything.test", ())

    def test_exact_and_subdomain(self):
        allowed = ("example.com",)
        assert is_domain_allowed("example.com", allowed)
        assert is_domain_allowed("sub.example.com", allowed)
        assert is_domain_allowed("EXAMPLE.com.", allowed)

    def test_no_partial_suffix_match(self):
        allowed = ("example.com",)
        assert not is_domain_allowed("badexample.com", allowed)
        assert not is_domain_allowed("example.org", allowed)


@pytest.mark.unit
class TestNormalize:
    def test_adds_https(self):
        assert normalize_url("example.com") == "https://example.com"

    def test_host_port_is_not_a_scheme(self):
        assert normalize_url("example.com:8080/a") == "https://example.com:8080/a"

    def test_keeps_scheme(self):
        assert normalize_url("  http://example.com ") == "http://example.com"

    def test_search_for_text_with_spaces(self):
        assert search_or_url("cute cats", SEARCH_URL) == "https://duckduckgo.com/?q=cute+cats"
        assert search_or_url("example.com", SEARCH_URL) == "example.com"


@pytest.mark.unit
class TestValidator:
    @pytest.mark.asyncio
    async def test_schemeless_gets_https(self):
        validator = make_validator(resolver=lambda host: asyncio.sleep(0, result=["93.184.216.34"]))
        assert await validator.validate("example.com") == "https://example.com"

    @pytest.mark.asyncio
    async def test_lowercases_scheme_and_host(self):
        validator = make_validator(resolver=lambda host: asyncio.sleep(0, result=["93.184.216.34"]))
        assert await validator.validate("HTTP://Example.COM/Path?q=A") == "http://example.com/Path?q=A"

    @pytest.mark.asyncio
    async def test_too_long(self):
        validator = make_validator()
        with pytest.raises(TooLong):
            await validator.validate("https://example.com/" + "a" * 2048)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["", "   ", "http://", "https://exa mple.com", "https://a.com\n/x"])
    async def test_invalid(self, raw):
        validator = make_validator()
        with pytest.raises(InvalidURL):
            await validator.validate(raw)

    @pytest.mark.asyncio
    async def test_bad_port(self):
        validator = make_validator()
        with pytest.raises(InvalidURL):
            await validator.validate("https://example.com:99999/")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["ftp://example.com", "file:///etc/passwd", "javascript:alert(1)"])
    async def test_scheme_not_allowed(self, raw):
        validator = make_validator()
        with pytest.raises(SchemeNotAllowed):
            await validator.validate(raw)

    @pytest.mark.asyncio
    async def test_allow_list(self):
        validator = make_validator(
            resolver=lambda host: asyncio.sleep(0, result=["93.184.216.34"]),
            allowed_domains=("example.com",),
        )
        assert await validator.validate("sub.example.com") == "https://sub.example.com"
        with pytest.raises(DomainNotAllowed):
            await validator.validate("example.org")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "http://127.0.0.1",
        "http://10.0.0.8:8080/admin",
        "http://169.254.169.254/latest/meta-data",
        "http://[::1]/",
        "http://[::ffff:192.168.0.1]/",
    ])
    async def test_private_literals_blocked(self, raw):
        validator = make_validator()
        with pytest.raises(BlockedHost) as exc_info:
            await validator.validate(raw)
        assert str(exc_info.value) == "Blocked private/internal host."

    @pytest.mark.asyncio
    async def test_loopback_blocked_with_real_resolver(self):
        validator = UrlValidator(BrowserSettings())
        with pytest.raises(BlockedHost):
            await validator.validate("127.0.0.1")

    @pytest.mark.asyncio
    async def test_literal_checked_without_resolver(self):
        calls = []

        async def public(host):
            calls.append(host)
            return ["93.184.216.34"]

        validator = make_validator(resolver=public)
        with pytest.raises(BlockedHost):
            await validator.validate("http://192.168.1.1/")
        assert await validator.validate("http://93.184.216.34/") == "http://93.184.216.34/"
        assert calls == []

    @pytest.mark.asyncio
    async def test_any_private_answer_blocks(self):
        validator = make_validator(resolver=lambda host: asyncio.sleep(0, result=["93.184.216.34", "10.0.0.1"]))
        with pytest.raises(BlockedHost):
            await validator.validate("https://rebind.example")

    @pytest.mark.asyncio
    async def test_dns_failure_denies(self):
        async def failing(host):
            raise socket.gaierror("Name or service not known")

        validator = make_validator(resolver=failing)
        with pytest.raises(BlockedHost):
            await validator.validate("https://nowhere.invalid")

    @pytest.mark.asyncio
    async def test_dns_timeout_denies(self):
        async def slow(host):
            await asyncio.sleep(1)
            return ["93.184.216.34"]

        validator = make_validator(resolver=slow, dns_timeout=0.01)
        with pytest.raises(BlockedHost):
            await validator.validate("https://slow.example")

    @pytest.mark.asyncio
    async def test_empty_answer_denies(self):
        validator = make_validator(resolver=lambda host: asyncio.sleep(0, result=[]))
        with pytest.raises(BlockedHost):
            await validator.validate("https://empty.example")

    @pytest.mark.asyncio
    async def test_all_rejections_are_validation_errors(self):
        validator = make_validator()
        with pytest.raises(ValidationError):
            await validator.validate("gopher://example.com")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolve_host_numeric():
    assert await resolve_host("127.0.0.1") == ["127.0.0.1"]
