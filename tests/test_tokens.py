"""Unit tests for access/refresh token signing and verification."""

import base64
import json
import time

import pytest

from xinli.config import Settings
from xinli.service.errors import TokenSigningError
from xinli.service.session_state import RefreshTokenStore
from xinli.service.tokens import SessionPayload, TokenCodec


@pytest.fixture
def settings():
    return Settings(
        jwt_access_secret="access-secret-for-token-tests",
        jwt_refresh_secret="refresh-secret-for-token-tests",
        jwt_access_ttl_seconds="2h",
        jwt_refresh_ttl_seconds="7d",
    )


@pytest.fixture
def refresh_store():
    return RefreshTokenStore()


@pytest.fixture
def codec(settings, refresh_store):
    return TokenCodec(settings, refresh_store)


@pytest.fixture
def payload():
    return SessionPayload(
        id=7,
        phone="13800000000",
        nickname="心礼用户",
        meet_days=1,
        avatar_url="",
        login_provider="sms",
    )


def _claims(token: str) -> dict:
    segment = token.split(".")[1]
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


def _tamper_claims(token: str, **changes) -> str:
    header, _, sig = token.split(".")
    claims = {**_claims(token), **changes}
    body = base64.urlsafe_b64encode(
        json.dumps(claims, separators=(",", ":")).encode()
    ).decode().rstrip("=")
    return f"{header}.{body}.{sig}"


def test_access_token_round_trip(codec, payload):
    token = codec.sign_access(payload)
    verified = codec.verify_access(token)
    assert verified == payload


def test_access_token_carries_camel_case_claims(codec, payload):
    claims = _claims(codec.sign_access(payload))
    assert claims["id"] == 7
    assert claims["meetDays"] == 1
    assert claims["loginProvider"] == "sms"
    assert claims["typ"] == "access"
    assert claims["iss"] == "xinli"
    assert claims["exp"] - claims["iat"] == 2 * 60 * 60
    # Unset fields are omitted rather than serialized as null
    assert "gender" not in claims
    assert "externalOpenId" not in claims


def test_refresh_token_uses_its_own_lifetime(codec, payload):
    claims = _claims(codec.sign_refresh(payload))
    assert claims["typ"] == "refresh"
    assert claims["exp"] - claims["iat"] == 7 * 24 * 60 * 60


def test_tokens_signed_in_the_same_second_differ(codec, payload):
    assert codec.sign_access(payload) != codec.sign_access(payload)


def test_access_token_rejected_as_refresh(codec, payload):
    access = codec.sign_access(payload)
    assert codec.verify_refresh(access) is None


def test_refresh_token_rejected_as_access(codec, payload):
    refresh = codec.sign_refresh(payload)
    assert codec.verify_access(refresh) is None


def test_sign_refresh_registers_token(codec, refresh_store, payload):
    token = codec.sign_refresh(payload)
    assert refresh_store.get("7") == token
    assert codec.verify_refresh(token) == payload


def test_newer_refresh_token_supersedes_older(codec, payload):
    first = codec.sign_refresh(payload)
    second = codec.sign_refresh(payload)
    assert codec.verify_refresh(first) is None
    assert codec.verify_refresh(second) == payload


def test_refresh_rejected_once_registration_deleted(codec, refresh_store, payload):
    token = codec.sign_refresh(payload)
    refresh_store.delete("7")
    assert codec.verify_refresh(token) is None


def test_tampered_signature_rejected(codec, payload):
    token = codec.sign_access(payload)
    header, body, sig = token.split(".")
    flipped = ("A" if sig[0] != "A" else "B") + sig[1:]
    assert codec.verify_access(f"{header}.{body}.{flipped}") is None


def test_tampered_claims_rejected(codec, payload):
    token = codec.sign_access(payload)
    assert codec.verify_access(_tamper_claims(token, id=8)) is None


def test_token_signed_with_other_secret_rejected(settings, payload):
    other = Settings(
        jwt_access_secret="some-other-access-secret",
        jwt_refresh_secret="some-other-refresh-secret",
    )
    token = TokenCodec(other, RefreshTokenStore()).sign_access(payload)
    assert TokenCodec(settings, RefreshTokenStore()).verify_access(token) is None


def test_non_hs256_header_rejected(codec, payload):
    token = codec.sign_access(payload)
    _, body, sig = token.split(".")
    header = base64.urlsafe_b64encode(
        json.dumps({"alg": "none", "typ": "JWT"}).encode()
    ).decode().rstrip("=")
    assert codec.verify_access(f"{header}.{body}.{sig}") is None


@pytest.mark.parametrize("token", ["", "garbage", "a.b", "a.b.c.d", "###.###.###"])
def test_malformed_tokens_rejected(codec, token):
    assert codec.verify_access(token) is None
    assert codec.verify_refresh(token) is None


def test_expired_access_token_rejected(settings, refresh_store, payload, monkeypatch):
    codec = TokenCodec(settings, refresh_store)
    issued_at = time.time() - settings.jwt_access_ttl_seconds - 5
    monkeypatch.setattr("xinli.service.tokens.time.time", lambda: issued_at)
    token = codec.sign_access(payload)
    monkeypatch.undo()
    assert codec.verify_access(token) is None


def test_leeway_tolerates_recent_expiry(refresh_store, payload, monkeypatch):
    settings = Settings(
        jwt_access_secret="access-secret-for-token-tests",
        jwt_refresh_secret="refresh-secret-for-token-tests",
        jwt_access_ttl_seconds=60,
        jwt_leeway_seconds=30,
    )
    codec = TokenCodec(settings, refresh_store)
    issued_at = time.time() - 70
    monkeypatch.setattr("xinli.service.tokens.time.time", lambda: issued_at)
    token = codec.sign_access(payload)
    monkeypatch.undo()
    assert codec.verify_access(token) == payload


def test_issuer_mismatch_rejected(settings, refresh_store, payload):
    other = settings.model_copy(update={"jwt_issuer": "someone-else"})
    token = TokenCodec(other, refresh_store).sign_access(payload)
    assert TokenCodec(settings, refresh_store).verify_access(token) is None


def test_signing_without_secret_raises(settings, refresh_store, payload):
    broken = settings.model_copy(update={"jwt_access_secret": ""})
    with pytest.raises(TokenSigningError):
        TokenCodec(broken, refresh_store).sign_access(payload)


def test_unserializable_payload_raises(codec):
    with pytest.raises(TokenSigningError):
        codec.sign_access(SessionPayload(id=1, nickname=object()))


def test_from_claims_drops_token_metadata():
    payload = SessionPayload.from_claims(
        {"id": 3, "avatarUrl": "a.png", "iat": 1, "exp": 2, "jti": "x", "typ": "access"}
    )
    assert payload == SessionPayload(id=3, avatar_url="a.png")
