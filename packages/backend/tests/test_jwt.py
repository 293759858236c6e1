"""Token codec tests — two keys, two families, distinct failure kinds."""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from warden.auth.jwt import (
    ACCESS,
    REFRESH,
    TokenCodec,
    TokenExpiredError,
    TokenInvalidError,
    TokenPayload,
)


@pytest.fixture()
def codec(settings):
    return TokenCodec(settings)


@pytest.fixture()
def payload():
    return TokenPayload(sub="42", roles=["administrator"], permissions=["users.read"])


def test_access_round_trip(codec, payload):
    token = codec.sign(payload, ACCESS)
    decoded = codec.verify(token, ACCESS)
    assert decoded.sub == "42"
    assert decoded.user_id == 42
    assert decoded.roles == ["administrator"]
    assert decoded.permissions == ["users.read"]
    assert decoded.type == ACCESS
    assert decoded.jti


def test_default_lifetimes(codec, payload):
    now = datetime.now(timezone.utc)
    access = codec.verify(codec.sign(payload, ACCESS), ACCESS)
    refresh = codec.verify(codec.sign(payload, REFRESH), REFRESH)
    assert timedelta(minutes=14) < access.exp - now <= timedelta(minutes=15, seconds=1)
    assert timedelta(days=6, hours=23) < refresh.exp - now <= timedelta(days=7, seconds=1)


def test_tokens_issued_back_to_back_differ(codec, payload):
    assert codec.sign(payload, REFRESH) != codec.sign(payload, REFRESH)


def test_refresh_token_is_not_an_access_token(codec, payload):
    """Signed with the other key, so the signature check fails first."""
    token = codec.sign(payload, REFRESH)
    with pytest.raises(TokenInvalidError):
        codec.verify(token, ACCESS)


def test_access_token_is_not_a_refresh_token(codec, payload):
    token = codec.sign(payload, ACCESS)
    with pytest.raises(TokenInvalidError):
        codec.verify(token, REFRESH)


def test_type_claim_is_enforced(settings, codec):
    """Even with the right key, a token claiming the wrong family is rejected."""
    forged = pyjwt.encode(
        {"sub": "1", "type": "refresh", "exp": 9999999999},
        settings.jwt_access_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenInvalidError):
        codec.verify(forged, ACCESS)


def test_expired_token_raises_expired_not_invalid(codec, payload):
    token = codec.sign(payload, ACCESS, expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredError):
        codec.verify(token, ACCESS)


def test_tampered_token_is_invalid(codec, payload):
    token = codec.sign(payload, ACCESS)
    header, body, signature = token.split(".")
    tampered = ".".join([header, body, signature[::-1]])
    with pytest.raises(TokenInvalidError):
        codec.verify(tampered, ACCESS)


def test_garbage_is_invalid(codec):
    with pytest.raises(TokenInvalidError):
        codec.verify("not.a.jwt", ACCESS)


def test_expiry_of_reports_exp_even_when_expired(codec, payload):
    token = codec.sign(payload, ACCESS, expires_delta=timedelta(seconds=-5))
    assert codec.expiry_of(token, ACCESS) < datetime.now(timezone.utc)


def test_expiry_of_unverifiable_token_is_a_full_lifetime(codec):
    exp = codec.expiry_of("garbage", ACCESS)
    assert exp - datetime.now(timezone.utc) > timedelta(minutes=14)
