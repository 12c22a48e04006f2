"""Tests for hostname normalization, validation and classification."""

from __future__ import annotations

import pytest

from tinydomains.core.config import DomainsConfig
from tinydomains.domains.errors import InvalidInputError
from tinydomains.domains.hostnames import (
    HostClass,
    HostClassifier,
    is_ip_literal,
    is_same_or_subdomain,
    normalize,
    validate_domain,
)


class TestNormalize:
    """Tests for normalize()."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Links.Example.COM", "links.example.com"),
            ("links.example.com:443", "links.example.com"),
            ("  tiny.pm.  ", "tiny.pm"),
            ("tiny.pm.:8080", "tiny.pm"),
            ("example.com:", "example.com"),
            ("[::1]:8080", "::1"),
            ("[2001:DB8::1]", "2001:db8::1"),
            ("::1", "::1"),
            ("10.0.0.1:80", "10.0.0.1"),
            ("x.test:80.", "x.test"),
            ("links.acme.test :443", "links.acme.test"),
            ("a.test. :80", "a.test"),
            ("tiny.pm..", "tiny.pm"),
            ("", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        """Test normalization of raw Host header values."""
        assert normalize(raw) == expected

    def test_non_numeric_port_kept(self):
        """Test malformed ports are not stripped."""
        assert normalize("Example.com:abc") == "example.com:abc"

    @pytest.mark.parametrize(
        "raw",
        [
            "Links.Example.COM:443",
            "[::1]:8080",
            "tiny.pm.",
            " A.B.C ",
            "x:y",
            "[::1",
            "x.test:80.",
            "links.acme.test :443",
            "a.test. :80",
            "a:1 .",
            "[a:80]",
            "[x.test.]:443",
        ],
    )
    def test_idempotent(self, raw):
        """Test normalize(normalize(h)) == normalize(h)."""
        once = normalize(raw)
        assert normalize(once) == once


class TestHelpers:
    """Tests for small hostname helpers."""

    def test_is_ip_literal(self):
        """Test IPv4 and IPv6 literal detection."""
        assert is_ip_literal("127.0.0.1") is True
        assert is_ip_literal("::1") is True
        assert is_ip_literal("example.com") is False
        assert is_ip_literal("") is False

    def test_is_same_or_subdomain(self):
        """Test root and subdomain matching."""
        assert is_same_or_subdomain("tiny.pm", "tiny.pm") is True
        assert is_same_or_subdomain("a.b.tiny.pm", "tiny.pm") is True
        assert is_same_or_subdomain("nottiny.pm", "tiny.pm") is False


class TestValidateDomain:
    """Tests for validate_domain()."""

    def test_valid_domain_normalized(self):
        """Test a valid domain comes back canonical."""
        assert validate_domain(" Links.Acme.Test. ") == "links.acme.test"

    def test_idna_conversion(self):
        """Test internationalized domains are converted to punycode."""
        assert validate_domain("bücher.example") == "xn--bcher-kva.example"

    def test_empty_domain(self):
        """Test empty input is rejected."""
        with pytest.raises(InvalidInputError, match="No domain provided"):
            validate_domain("   ")

    def test_ip_literal_rejected(self):
        """Test IP addresses are rejected."""
        with pytest.raises(InvalidInputError, match="IP addresses"):
            validate_domain("1.2.3.4")

    def test_single_label_rejected(self):
        """Test names without a TLD are rejected."""
        with pytest.raises(InvalidInputError, match="top-level domain"):
            validate_domain("localhost")

    def test_too_long_rejected(self):
        """Test names over 253 characters are rejected."""
        domain = ".".join(["a" * 63] * 4) + ".com"
        with pytest.raises(InvalidInputError, match="too long"):
            validate_domain(domain)

    @pytest.mark.parametrize(
        "domain",
        ["-bad.example.com", "bad-.example.com", "a..example.com", "under_score.example.com"],
    )
    def test_invalid_labels_rejected(self, domain):
        """Test labels that are not valid hostnames are rejected."""
        with pytest.raises(InvalidInputError):
            validate_domain(domain)

    def test_numeric_tld_rejected(self):
        """Test all-numeric TLDs are rejected."""
        with pytest.raises(InvalidInputError, match="top-level domain"):
            validate_domain("example.123")

    def test_invalid_input_is_value_error(self):
        """Test InvalidInputError can be caught as ValueError."""
        with pytest.raises(ValueError):
            validate_domain("")


class TestHostClassifier:
    """Tests for HostClassifier."""

    @pytest.fixture
    def production(self):
        return HostClassifier(DomainsConfig(environment="production", _env_file=None))

    @pytest.fixture
    def development(self):
        return HostClassifier(DomainsConfig(environment="development", _env_file=None))

    @pytest.mark.parametrize("host", ["tiny.pm", "www.tiny.pm", "a.b.tiny.pm", ""])
    def test_platform_hosts(self, production, host):
        """Test platform root and its subdomains classify as PLATFORM."""
        assert production.classify(host) == HostClass.PLATFORM

    def test_platform_regardless_of_case_or_port(self, production):
        """Test classification after normalization ignores case and port."""
        assert production.classify(normalize("WWW.Tiny.PM:8443")) == HostClass.PLATFORM

    def test_ip_literals_are_platform(self, production):
        """Test bare IPs are never custom domains."""
        assert production.classify("10.0.0.1") == HostClass.PLATFORM
        assert production.classify(normalize("[::1]:8080")) == HostClass.PLATFORM

    def test_candidate(self, production):
        """Test other hosts are candidate custom domains."""
        assert production.classify("links.example.com") == HostClass.CANDIDATE
        assert production.classify("nottiny.pm") == HostClass.CANDIDATE

    def test_dev_aliases_ignored_in_production(self, production):
        """Test development aliases do not apply in production."""
        assert production.classify("localhost") == HostClass.CANDIDATE
        assert production.classify("app.localhost") == HostClass.CANDIDATE

    def test_dev_aliases_in_development(self, development):
        """Test development aliases outside production."""
        assert development.classify("localhost") == HostClass.DEVELOPMENT
        assert development.classify("app.localhost") == HostClass.DEVELOPMENT
        assert development.classify("127.0.0.1") == HostClass.DEVELOPMENT

    def test_dev_alias_is_not_substring_match(self, development):
        """Test hosts merely containing 'localhost' are still candidates."""
        assert development.classify("mylocalhost.com") == HostClass.CANDIDATE
        assert development.classify("localhost.evil.test") == HostClass.CANDIDATE

    def test_platform_wins_over_development(self):
        """Test the platform check runs before the development check."""
        classifier = HostClassifier(
            DomainsConfig(environment="development", dev_aliases=["tiny.pm"], _env_file=None)
        )
        assert classifier.classify("tiny.pm") == HostClass.PLATFORM
