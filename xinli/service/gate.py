from __future__ import annotations

from typing import Optional

from xinli.logging import get_logger
from xinli.service.errors import Unauthorized
from xinli.service.session_state import RevocationList
from xinli.service.tokens import SessionPayload, TokenCodec

logger = get_logger(__name__)

_BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""

    if not authorization:
        return None
    if authorization[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


class RequestGate:
    """Admits requests carrying a live, unrevoked access token."""

    def __init__(self, tokens: TokenCodec, revocations: RevocationList) -> None:
        self.tokens = tokens
        self.revocations = revocations

    def authenticate(self, authorization: Optional[str]) -> SessionPayload:
        token = extract_bearer_token(authorization)
        if not token:
            raise Unauthorized("missing bearer token")
        # Revocation is checked before the signature
        if self.revocations.contains(token):
            logger.info("access_token_revoked_rejected")
            raise Unauthorized("token revoked")
        payload = self.tokens.verify_access(token)
        if payload is None:
            raise Unauthorized("invalid or expired token")
        return payload
