"""
Tests for the token service.

Covers issuing, validation, expiry, token type separation and tamper
resistance (property-based).
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from hypothesis import given, settings, assume
from hypothesis import strategies as st
from jwt.utils import base64url_decode, base64url_encode

from stockroom.auth.tokens import (
    TokenService,
    TokenServiceError,
    TokenType,
    TokenValidation,
)

SECRET = "unit-test-signing-secret-at-least-32-bytes"
ACCESS_TTL = 1800
REFRESH_TTL = 7 * 24 * 3600


def _service(clock=None) -> TokenService:
    kwargs = {"clock": clock} if clock else {}
    return TokenService(SECRET, ACCESS_TTL, REFRESH_TTL, **kwargs)


SERVICE = _service()

subjects = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)),
    min_size=1,
    max_size=64,
)


def _alter_signature_byte(token: str, index: int, mask: int) -> str:
    header, payload, signature = token.split(".")
    raw = bytearray(base64url_decode(signature.encode("ascii")))
    raw[index % len(raw)] ^= mask
    return ".".join([header, payload, base64url_encode(bytes(raw)).decode("ascii")])


class TestTokenServiceConstruction:

    def test_empty_secret_rejected(self):
        with pytest.raises(TokenServiceError):
            TokenService("", ACCESS_TTL, REFRESH_TTL)

    def test_access_ttl_must_be_shorter_than_refresh(self):
        with pytest.raises(TokenServiceError):
            TokenService(SECRET, 3600, 3600)

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(TokenServiceError):
            TokenService(SECRET, 0, REFRESH_TTL)

    def test_ttl_properties(self):
        assert SERVICE.access_ttl_seconds == ACCESS_TTL
        assert SERVICE.refresh_ttl_seconds == REFRESH_TTL


class TestIssue:

    def test_issue_returns_pair_with_distinct_expiries(self):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        pair = _service(clock=lambda: now).issue("alice")

        assert pair.access_token != pair.refresh_token
        assert pair.access_expires_at == now + timedelta(seconds=ACCESS_TTL)
        assert pair.refresh_expires_at == now + timedelta(seconds=REFRESH_TTL)

    def test_two_pairs_in_same_second_differ(self):
        now = datetime.now(timezone.utc)
        service = _service(clock=lambda: now)
        assert service.issue("alice").access_token != service.issue("alice").access_token

    def test_empty_subject_rejected(self):
        with pytest.raises(TokenServiceError):
            SERVICE.issue("")

    def test_claims(self):
        pair = SERVICE.issue("alice")
        claims = jwt.decode(pair.access_token, SECRET, algorithms=["HS256"])
        assert claims["sub"] == "alice"
        assert claims["typ"] == "access"
        assert "jti" in claims

    def test_to_dict_uses_camel_case(self):
        data = SERVICE.issue("alice").to_dict()
        assert set(data) == {"accessToken", "refreshToken", "accessExpiresAt", "refreshExpiresAt"}


class TestValidate:

    def test_valid_access_token(self):
        pair = SERVICE.issue("alice")
        result = SERVICE.validate(pair.access_token)
        assert result.valid
        assert result.subject == "alice"
        assert result.token_type == TokenType.ACCESS

    def test_refresh_token_is_not_an_access_token(self):
        pair = SERVICE.issue("alice")
        assert not SERVICE.validate(pair.refresh_token, TokenType.ACCESS)
        assert SERVICE.validate(pair.refresh_token, TokenType.REFRESH).subject == "alice"

    def test_access_token_is_not_a_refresh_token(self):
        pair = SERVICE.issue("alice")
        assert not SERVICE.validate(pair.access_token, TokenType.REFRESH)

    def test_expired_access_token_invalid(self):
        issued = datetime.now(timezone.utc) - timedelta(seconds=ACCESS_TTL + 60)
        pair = _service(clock=lambda: issued).issue("alice")

        assert not SERVICE.validate(pair.access_token)
        # Refresh token from the same pair is still within its lifetime
        assert SERVICE.validate(pair.refresh_token, TokenType.REFRESH).valid

    def test_wrong_secret_invalid(self):
        other = TokenService("another-secret-that-is-also-32-bytes-long", ACCESS_TTL, REFRESH_TTL)
        assert not SERVICE.validate(other.issue("alice").access_token)

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c", "...", 12345])
    def test_malformed_input_invalid(self, token):
        result = SERVICE.validate(token)
        assert result is TokenValidation.invalid()
        assert not result

    def test_unsigned_token_rejected(self):
        token = jwt.encode(
            {"sub": "alice", "typ": "access", "iat": 0, "exp": 9999999999},
            key=None,
            algorithm="none",
        )
        assert not SERVICE.validate(token)

    def test_missing_type_claim_rejected(self):
        now = int(datetime.now(timezone.utc).timestamp())
        token = jwt.encode({"sub": "alice", "iat": now, "exp": now + 60}, SECRET, algorithm="HS256")
        assert not SERVICE.validate(token)

    def test_subject_of_valid_token(self):
        pair = SERVICE.issue("alice")
        assert SERVICE.subject_of(pair.refresh_token, TokenType.REFRESH) == "alice"

    def test_subject_of_invalid_token_raises(self):
        with pytest.raises(TokenServiceError):
            SERVICE.subject_of("garbage")


class TestTokenProperties:
    """Property-based tests for round-trip and tamper resistance."""

    @given(subject=subjects)
    @settings(max_examples=100, deadline=None)
    def test_valid_token_returns_original_subject(self, subject):
        pair = SERVICE.issue(subject)
        assert SERVICE.validate(pair.access_token).subject == subject
        assert SERVICE.validate(pair.refresh_token, TokenType.REFRESH).subject == subject

    @given(
        subject=subjects,
        index=st.integers(min_value=0, max_value=31),
        mask=st.integers(min_value=1, max_value=255),
    )
    @settings(max_examples=200, deadline=None)
    def test_altered_signature_byte_is_invalid(self, subject, index, mask):
        pair = SERVICE.issue(subject)
        tampered = _alter_signature_byte(pair.access_token, index, mask)
        assert tampered != pair.access_token
        assert not SERVICE.validate(tampered)

    @given(subject=subjects, other=subjects)
    @settings(max_examples=100, deadline=None)
    def test_swapped_payload_is_invalid(self, subject, other):
        assume(subject != other)
        header, _, signature = SERVICE.issue(subject).access_token.split(".")
        _, forged_payload, _ = SERVICE.issue(other).access_token.split(".")
        assert not SERVICE.validate(".".join([header, forged_payload, signature]))

    @given(token=st.text(max_size=300))
    @settings(max_examples=200, deadline=None)
    def test_arbitrary_text_never_raises(self, token):
        assert not SERVICE.validate(token)
