"""
Unit tests for subdomain generation and sanitizing.
"""
import re
import pytest

from hostpanel.name_generator import (
    sanitize_subdomain,
    generate_subdomain,
    ADJECTIVES,
    NOUNS,
    MAX_LABEL_LENGTH
)


class TestSanitizeSubdomain:

    @pytest.mark.parametrize("raw,expected", [
        ("alpha", "alpha"),
        ("My Server!", "my-server"),
        ("  Foo__Bar  ", "foo-bar"),
        ("--edge--", "edge"),
        ("UPPER-123", "upper-123"),
        ("café", "caf"),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_subdomain(raw) == expected

    def test_empty(self):
        assert sanitize_subdomain("") == ""
        assert sanitize_subdomain("!!!") == ""
        assert sanitize_subdomain(None) == ""

    def test_length_limit(self):
        label = sanitize_subdomain("a" * 100)
        assert len(label) == MAX_LABEL_LENGTH

    def test_no_trailing_dash_after_truncation(self):
        label = sanitize_subdomain("a" * 62 + " b")
        assert not label.endswith("-")


class TestGenerateSubdomain:

    def test_format(self):
        name = generate_subdomain()
        adj, noun, num = name.split("-")
        assert adj in ADJECTIVES
        assert noun in NOUNS
        assert 10 <= int(num) <= 99

    def test_is_dns_safe(self):
        for _ in range(20):
            assert re.match(r'^[a-z0-9-]+$', generate_subdomain())
