"""Tests for ban identity normalization helpers."""

from __future__ import annotations

import pytest

from bastion.bans.models import BanKind, normalize_identity, token_signature


class TestNormalizeIdentity:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("1.2.3.4", "1.2.3.4"),
            ("::ffff:1.2.3.4", "1.2.3.4"),
            ("::FFFF:1.2.3.4", "1.2.3.4"),
            ("  10.0.0.1 ", "10.0.0.1"),
            ("2001:DB8::1", "2001:db8::1"),
        ],
    )
    def test_ip(self, raw, expected):
        assert normalize_identity(BanKind.IP, raw) == expected

    def test_user_keeps_case(self):
        assert normalize_identity(BanKind.USER, " User-ABC ") == "User-ABC"

    def test_token_does_not_strip_mapped_prefix(self):
        assert normalize_identity(BanKind.TOKEN, "::ffff:abc") == "::ffff:abc"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty(self, raw):
        assert normalize_identity(BanKind.IP, raw) == ""

    def test_idempotent(self):
        once = normalize_identity(BanKind.IP, "::ffff:1.2.3.4")
        assert normalize_identity(BanKind.IP, once) == once


class TestTokenSignature:
    def test_jwt_signature_segment(self):
        assert token_signature("header.payload.signature") == "signature"

    def test_opaque_token(self):
        assert token_signature("opaque-token") == "opaque-token"

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing(self, token):
        assert token_signature(token) == ""
