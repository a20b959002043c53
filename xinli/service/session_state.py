"""Process-wide token state: the refresh registry and the access revocation list.

Neither structure is persisted. A restart drops every refresh registration
(forcing re-login) and every revocation record. Both are mutated with single
dict/set operations, which never straddle an ``await`` on the event loop, so
no lock is taken.
"""

from __future__ import annotations

from typing import Dict, Optional, Set

from xinli.logging import get_logger

logger = get_logger(__name__)


class RefreshTokenStore:
    """At most one live refresh token per user; writes overwrite."""

    def __init__(self) -> None:
        self._tokens: Dict[str, str] = {}

    def set(self, user_id: str, token: str) -> None:
        replaced = user_id in self._tokens
        self._tokens[user_id] = token
        logger.debug(
            "refresh_token_stored", user_id=user_id, replaced=replaced, size=len(self._tokens)
        )

    def get(self, user_id: str) -> Optional[str]:
        return self._tokens.get(user_id)

    def delete(self, user_id: str) -> None:
        self._tokens.pop(user_id, None)
        logger.debug("refresh_token_deleted", user_id=user_id, size=len(self._tokens))

    def __len__(self) -> int:
        return len(self._tokens)


class RevocationList:
    """Access tokens invalidated by logout before their natural expiry."""

    def __init__(self) -> None:
        # TODO: evict entries once their exp has passed; the set only grows today
        self._tokens: Set[str] = set()

    def add(self, token: str) -> None:
        self._tokens.add(token)
        logger.debug("access_token_revoked", size=len(self._tokens))

    def contains(self, token: str) -> bool:
        return token in self._tokens

    def __contains__(self, token: object) -> bool:
        return token in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)


_refresh_store = RefreshTokenStore()
_revocation_list = RevocationList()


def get_refresh_store() -> RefreshTokenStore:
    return _refresh_store


def get_revocation_list() -> RevocationList:
    return _revocation_list


def reset_session_state() -> None:
    """Drop all registrations and revocations (what a restart does)."""

    global _refresh_store, _revocation_list
    _refresh_store = RefreshTokenStore()
    _revocation_list = RevocationList()
