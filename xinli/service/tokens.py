from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Optional

from xinli.config import Settings
from xinli.logging import get_logger
from xinli.service.errors import TokenSigningError
from xinli.service.session_state import RefreshTokenStore

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

# Attribute name -> claim name used on the wire and inside tokens
_CLAIM_NAMES = {
    "id": "id",
    "phone": "phone",
    "nickname": "nickname",
    "gender": "gender",
    "meet_days": "meetDays",
    "avatar_url": "avatarUrl",
    "login_provider": "loginProvider",
    "external_open_id": "externalOpenId",
    "external_union_id": "externalUnionId",
}


@dataclass
class SessionPayload:
    """User snapshot carried inside both tokens, rebuilt at every issuance."""

    id: int
    phone: Optional[str] = None
    nickname: Optional[str] = None
    gender: Optional[bool] = None
    meet_days: Optional[int] = None
    avatar_url: Optional[str] = None
    login_provider: Optional[str] = None
    external_open_id: Optional[str] = None
    external_union_id: Optional[str] = None

    def to_claims(self) -> dict[str, Any]:
        """camelCase claims; unset fields are left out."""
        return {
            _CLAIM_NAMES[name]: value
            for name, value in asdict(self).items()
            if value is not None
        }

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "SessionPayload":
        # Only session fields survive; iat/exp/jti from a decoded token are dropped
        return cls(
            **{
                name: claims[claim]
                for name, claim in _CLAIM_NAMES.items()
                if claim in claims
            }
        )


class TokenCodec:
    """HS256 access/refresh tokens with independent secrets and lifetimes."""

    def __init__(self, settings: Settings, refresh_store: RefreshTokenStore) -> None:
        self.settings = settings
        self.refresh_store = refresh_store
        self.logger = logger

    def _secret(self, token_type: str) -> str:
        if token_type == ACCESS:
            return self.settings.jwt_access_secret or ""
        return self.settings.jwt_refresh_secret or ""

    def _ttl(self, token_type: str) -> int:
        if token_type == ACCESS:
            return self.settings.jwt_access_ttl_seconds
        return self.settings.jwt_refresh_ttl_seconds

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str, secret: str) -> str:
        return self._encode_segment(
            hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, claims: dict[str, Any], secret: str) -> str:
        if not secret:
            raise TokenSigningError("token signing secret is not configured")
        header = {"alg": "HS256", "typ": "JWT"}
        try:
            header_enc = self._encode_segment(
                json.dumps(header, separators=(",", ":")).encode()
            )
            payload_enc = self._encode_segment(
                json.dumps(claims, separators=(",", ":"), ensure_ascii=False).encode()
            )
        except (TypeError, ValueError) as exc:
            raise TokenSigningError("token payload is not serializable") from exc
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"

    def _decode_jwt(self, token: str, token_type: str) -> Optional[dict[str, Any]]:
        if not token or not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to avoid algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
            if header.get("alg") != "HS256":
                logger.warning("jwt_invalid_algorithm", alg=header.get("alg"))
                return None
        except Exception:
            logger.warning("jwt_header_decode_failed")
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}", self._secret(token_type))
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except Exception as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("typ") != token_type:
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        exp = payload.get("exp")
        if exp is None or isinstance(exp, bool):
            return None
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        if exp_ts <= time.time() - self.settings.jwt_leeway_seconds:
            return None
        if not isinstance(payload.get("id"), int) or isinstance(payload.get("id"), bool):
            return None
        return payload

    def _issue(self, payload: SessionPayload, token_type: str) -> str:
        now = int(time.time())
        claims = {
            **payload.to_claims(),
            "typ": token_type,
            "iss": self.settings.jwt_issuer,
            "iat": now,
            "exp": now + self._ttl(token_type),
            # Distinguishes tokens minted for the same payload within one second
            "jti": uuid.uuid4().hex,
        }
        return self._encode_jwt(claims, self._secret(token_type))

    def sign_access(self, payload: SessionPayload) -> str:
        try:
            token = self._issue(payload, ACCESS)
        except TokenSigningError as exc:
            self.logger.error("access_token_sign_failed", user_id=payload.id, error=exc.message)
            raise
        self.logger.info("access_token_signed", user_id=payload.id)
        return token

    def sign_refresh(self, payload: SessionPayload) -> str:
        try:
            token = self._issue(payload, REFRESH)
        except TokenSigningError as exc:
            self.logger.error("refresh_token_sign_failed", user_id=payload.id, error=exc.message)
            raise
        # Overwrites any earlier token: only the latest login may refresh
        self.refresh_store.set(str(payload.id), token)
        self.logger.info("refresh_token_signed", user_id=payload.id)
        return token

    def verify_access(self, token: str) -> Optional[SessionPayload]:
        claims = self._decode_jwt(token, ACCESS)
        if claims is None:
            return None
        return SessionPayload.from_claims(claims)

    def verify_refresh(self, token: str) -> Optional[SessionPayload]:
        claims = self._decode_jwt(token, REFRESH)
        if claims is None:
            self.logger.info("refresh_token_rejected", reason="invalid")
            return None
        stored = self.refresh_store.get(str(claims["id"]))
        if stored is None or not hmac.compare_digest(stored.encode(), token.encode()):
            self.logger.info("refresh_token_rejected", reason="stale", user_id=claims["id"])
            return None
        return SessionPayload.from_claims(claims)
