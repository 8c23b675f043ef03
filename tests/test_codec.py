"""Unit tests for core_oauth.codec

Test Coverage:
- Claims and kid header of issued tokens
- Expiry boundary evaluated against the codec clock
- Wrong key, unknown kid and malformed tokens
- Key rotation through the keyring
"""

from datetime import timedelta

import jwt
import pytest

from core_oauth.codec import JwtTokenCodec
from core_oauth.exceptions import InvalidToken, ServerError, TokenExpired, UnauthorizedRequest
from core_oauth.models import AccessToken

from conftest import KID, NOW, SIGNING_KEY, FakeClock


def make_record(lifetime: int = 3600, user_id="42", scope="read") -> AccessToken:
    return AccessToken(
        id="opaque-token-id",
        client_id="abc",
        user_id=user_id,
        scope=scope,
        issued_at=NOW,
        expires_at=NOW + timedelta(seconds=lifetime),
    )


# ============================================================================
# ISSUE
# ============================================================================


def test_issue_claims(codec):
    token = codec.issue(make_record())

    header = jwt.get_unverified_header(token)
    assert header["kid"] == KID
    assert header["alg"] == "HS256"

    claims = jwt.decode(token, SIGNING_KEY, algorithms=["HS256"], options={"verify_exp": False})
    assert claims["access_token"] == "opaque-token-id"
    assert claims["sub"] == "42"
    assert claims["cid"] == "abc"
    assert claims["scope"] == "read"
    assert claims["iat"] == int(NOW.timestamp())
    assert claims["exp"] == int(NOW.timestamp()) + 3600
    assert "iss" not in claims


def test_issue_client_token_subject_is_client(codec):
    token = codec.issue(make_record(user_id=None, scope=None))

    claims = codec.decode(token)
    assert claims["sub"] == "abc"
    assert "scope" not in claims


def test_issue_with_issuer(clock):
    codec = JwtTokenCodec({KID: SIGNING_KEY}, KID, issuer="https://auth.example", clock=clock)

    claims = codec.decode(codec.issue(make_record()))
    assert claims["iss"] == "https://auth.example"


def test_issue_signing_failure_is_server_error(clock):
    codec = JwtTokenCodec({KID: SIGNING_KEY}, KID, clock=clock)

    # Non-string key cannot be used for HMAC
    codec._keys[KID] = object()

    with pytest.raises(ServerError):
        codec.issue(make_record())


# ============================================================================
# EXPIRY
# ============================================================================


def test_decode_just_before_expiry(codec, clock):
    token = codec.issue(make_record(lifetime=3600))

    clock.advance(3599)
    assert codec.decode(token)["access_token"] == "opaque-token-id"


@pytest.mark.parametrize("elapsed", [3600, 3601])
def test_decode_at_or_after_expiry(codec, clock, elapsed):
    token = codec.issue(make_record(lifetime=3600))

    clock.advance(elapsed)
    with pytest.raises(TokenExpired) as exc_info:
        codec.decode(token)

    assert exc_info.value.code == 401
    assert exc_info.value.name == "invalid_token"


def test_decode_expiry_keeps_fractional_seconds():
    clock = FakeClock(NOW + timedelta(milliseconds=700))
    codec = JwtTokenCodec({KID: SIGNING_KEY}, KID, clock=clock)
    record = AccessToken(
        id="opaque-token-id",
        client_id="abc",
        user_id="42",
        issued_at=clock(),
        expires_at=clock() + timedelta(seconds=10),
    )
    token = codec.issue(record)

    clock.advance(9.5)
    assert not record.is_expired(clock())
    assert codec.decode(token)["access_token"] == "opaque-token-id"

    clock.advance(0.5)
    with pytest.raises(TokenExpired):
        codec.decode(token)


# ============================================================================
# VERIFICATION FAILURES
# ============================================================================


def test_decode_wrong_key(codec, clock):
    other = JwtTokenCodec({KID: "a-completely-different-signing-key-xyz"}, KID, clock=clock)
    token = other.issue(make_record())

    with pytest.raises(InvalidToken) as exc_info:
        codec.decode(token)

    # Bad tokens are unauthorized requests at the boundary
    assert isinstance(exc_info.value, UnauthorizedRequest)


def test_decode_unknown_kid(codec, clock):
    other = JwtTokenCodec({"retired-kid": SIGNING_KEY}, "retired-kid", clock=clock)

    with pytest.raises(InvalidToken):
        codec.decode(other.issue(make_record()))


def test_decode_missing_kid(codec):
    token = jwt.encode({"access_token": "x", "sub": "42", "exp": 9999999999}, SIGNING_KEY, algorithm="HS256")

    with pytest.raises(InvalidToken):
        codec.decode(token)


def test_decode_missing_required_claim(codec):
    token = jwt.encode({"sub": "42", "exp": 9999999999}, SIGNING_KEY, algorithm="HS256", headers={"kid": KID})

    with pytest.raises(InvalidToken):
        codec.decode(token)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
def test_decode_malformed(codec, token):
    with pytest.raises(InvalidToken):
        codec.decode(token)


def test_decode_rejects_other_algorithm(codec):
    token = jwt.encode(
        {"access_token": "x", "sub": "42", "exp": 9999999999},
        SIGNING_KEY,
        algorithm="HS512",
        headers={"kid": KID},
    )

    with pytest.raises(InvalidToken):
        codec.decode(token)


# ============================================================================
# KEY ROTATION
# ============================================================================


def test_rotated_key_still_verifies_old_tokens():
    clock = FakeClock(NOW)
    old_key = "old-signing-key-0123456789abcdef0123456789"
    new_key = "new-signing-key-0123456789abcdef0123456789"

    before = JwtTokenCodec({"kid-2023": old_key}, "kid-2023", clock=clock)
    old_token = before.issue(make_record())

    after = JwtTokenCodec({"kid-2023": old_key, "kid-2024": new_key}, "kid-2024", clock=clock)
    new_token = after.issue(make_record())

    assert jwt.get_unverified_header(new_token)["kid"] == "kid-2024"
    assert after.decode(old_token)["access_token"] == "opaque-token-id"
    assert after.decode(new_token)["access_token"] == "opaque-token-id"

    # Once the old key leaves the keyring its tokens stop verifying
    retired = JwtTokenCodec({"kid-2024": new_key}, "kid-2024", clock=clock)
    with pytest.raises(InvalidToken):
        retired.decode(old_token)


def test_active_kid_must_be_in_keyring():
    with pytest.raises(ValueError):
        JwtTokenCodec({"a": SIGNING_KEY}, "b")


def test_unsupported_algorithm():
    with pytest.raises(ValueError):
        JwtTokenCodec({KID: SIGNING_KEY}, KID, algorithm="RS256")


def test_from_settings_uses_configured_kid():
    codec = JwtTokenCodec.from_settings()
    token = codec.issue(make_record(lifetime=10**10))

    assert jwt.get_unverified_header(token)["kid"] == codec.active_kid
