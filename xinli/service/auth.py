from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol

from xinli.config import FALLBACK_LOGIN_CODE, Settings
from xinli.logging import get_logger
from xinli.service.errors import (
    InvalidCredentials,
    InvalidRefreshToken,
    MissingIdentifier,
    UserNotFound,
)
from xinli.service.identity import IdentityProvider
from xinli.service.session_state import RevocationList
from xinli.service.tokens import SessionPayload, TokenCodec
from xinli.storage.models import DEFAULT_NICKNAME, LoginProvider, User, UserSettings

logger = get_logger(__name__)

# Mainland mobile number: 11 digits, leading 1
PHONE_RE = re.compile(r"1\d{10}")

_SECONDS_PER_DAY = 60 * 60 * 24


class UserStore(Protocol):
    def create_user(self, **values: Any) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_phone(self, phone: str) -> Optional[User]: ...

    def find_user_by_external_identity(
        self, open_id: str, union_id: Optional[str] = None
    ) -> Optional[User]: ...

    def upsert_user_by_phone(self, phone: str, *, login_provider: LoginProvider) -> User: ...

    def update_user(self, user_id: int, **changes: Any) -> Optional[User]: ...

    def get_user_settings(self, user_id: int) -> Optional[UserSettings]: ...

    def set_user_settings(
        self,
        user_id: int,
        *,
        important_date_reminder: Optional[bool] = None,
        inspiration_push: Optional[bool] = None,
    ) -> UserSettings: ...


@dataclass
class LoginResult:
    user: SessionPayload
    access_token: str
    refresh_token: str


@dataclass
class LogoutResult:
    """Logout always succeeds; anything that went wrong is recorded, not raised."""

    success: bool = True
    access_token_revoked: bool = False
    refresh_token_cleared: bool = False
    errors: List[str] = field(default_factory=list)


def validate_phone(phone: str) -> bool:
    return isinstance(phone, str) and bool(PHONE_RE.fullmatch(phone))


def compute_meet_days(created_at: datetime, now: Optional[datetime] = None) -> int:
    """Days since registration, counting the registration day as day 1.

    Never below 1, even for future-dated or clock-skewed records.
    """
    current = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    elapsed_days = math.floor((current - created_at).total_seconds() / _SECONDS_PER_DAY)
    return max(1, elapsed_days + 1)


def _clean_hint(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class SessionService:
    """Login, token refresh, logout and profile handling for the client apps."""

    def __init__(
        self,
        store: UserStore,
        tokens: TokenCodec,
        revocations: RevocationList,
        identity: IdentityProvider,
        settings: Settings,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.revocations = revocations
        self.identity = identity
        self.settings = settings
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def to_payload(self, user: User) -> SessionPayload:
        return SessionPayload(
            id=user.id,
            phone=user.phone,
            nickname=user.nickname if user.nickname is not None else DEFAULT_NICKNAME,
            gender=user.gender,
            meet_days=compute_meet_days(user.created_at, self._now()),
            avatar_url=user.avatar_url or "",
            login_provider=user.login_provider.value if user.login_provider else None,
            external_open_id=user.external_open_id,
            external_union_id=user.external_union_id,
        )

    def _issue_pair(self, user: User) -> LoginResult:
        payload = self.to_payload(user)
        access_token = self.tokens.sign_access(payload)
        refresh_token = self.tokens.sign_refresh(payload)
        return LoginResult(user=payload, access_token=access_token, refresh_token=refresh_token)

    def _check_code(self, phone: str, code: str) -> Optional[str]:
        """Return the phone number to log in as, or None if rejected."""
        if self.settings.stub_login_configured:
            if phone == self.settings.stub_phone and code == self.settings.stub_code:
                return self.settings.stub_phone
            return None
        if code == FALLBACK_LOGIN_CODE:
            return phone
        return None

    async def login_with_code(self, phone: str, code: str) -> LoginResult:
        phone = (phone or "").strip()
        code = (code or "").strip()
        if not phone or not code:
            raise InvalidCredentials("phone or code missing")
        if not validate_phone(phone):
            raise InvalidCredentials("invalid phone number format")
        login_phone = self._check_code(phone, code)
        if login_phone is None:
            self.logger.info("code_login_rejected", phone=phone)
            raise InvalidCredentials("invalid phone or code")

        user = self.store.upsert_user_by_phone(login_phone, login_provider=LoginProvider.SMS)
        result = self._issue_pair(user)
        self.logger.info("code_login_success", user_id=user.id)
        return result

    async def login_with_external_identity(
        self,
        exchange_code: str,
        nickname_hint: Optional[str] = None,
        avatar_hint: Optional[str] = None,
    ) -> LoginResult:
        exchange_code = (exchange_code or "").strip()
        if not exchange_code:
            raise InvalidCredentials("code missing")

        session = await self.identity.code_to_session(exchange_code)
        if not session.open_id:
            raise MissingIdentifier("provider returned no openId")

        nickname = _clean_hint(nickname_hint)
        avatar_url = _clean_hint(avatar_hint)
        existing = self.store.find_user_by_external_identity(
            session.open_id, session.union_id
        )
        if existing is None:
            user = self.store.create_user(
                external_open_id=session.open_id,
                external_union_id=session.union_id,
                external_session_key=session.session_key,
                nickname=nickname or DEFAULT_NICKNAME,
                avatar_url=avatar_url or "",
                login_provider=LoginProvider.WECHAT,
            )
        else:
            # Fill gaps only; a user-edited nickname or avatar is never replaced
            changes: dict[str, Any] = {}
            if session.session_key and existing.external_session_key != session.session_key:
                changes["external_session_key"] = session.session_key
            if session.union_id and not existing.external_union_id:
                changes["external_union_id"] = session.union_id
            if existing.login_provider != LoginProvider.WECHAT:
                changes["login_provider"] = LoginProvider.WECHAT
            if nickname and not existing.nickname:
                changes["nickname"] = nickname
            if avatar_url and not existing.avatar_url:
                changes["avatar_url"] = avatar_url
            user = existing
            if changes:
                user = self.store.update_user(existing.id, **changes) or existing
                self.logger.info(
                    "external_user_merged", user_id=user.id, fields=sorted(changes)
                )

        result = self._issue_pair(user)
        self.logger.info("external_login_success", user_id=user.id)
        return result

    async def refresh_access_token(self, refresh_token: str) -> str:
        payload = self.tokens.verify_refresh(refresh_token) if refresh_token else None
        if payload is None:
            # One message for bad signature, expiry and superseded tokens alike
            raise InvalidRefreshToken("invalid refresh token")
        return self.tokens.sign_access(payload)

    async def logout(
        self, access_token: Optional[str], refresh_token: Optional[str] = None
    ) -> LogoutResult:
        result = LogoutResult()
        if access_token:
            try:
                self.revocations.add(access_token)
                result.access_token_revoked = True
            except Exception as exc:
                result.errors.append(f"revoke_access: {exc}")
        if refresh_token:
            try:
                payload = self.tokens.verify_refresh(refresh_token)
                if payload is not None:
                    self.tokens.refresh_store.delete(str(payload.id))
                    result.refresh_token_cleared = True
            except Exception as exc:
                result.errors.append(f"clear_refresh: {exc}")
        if result.errors:
            self.logger.warning("logout_partial_failure", errors=result.errors)
        else:
            self.logger.info(
                "logout_complete",
                access_token_revoked=result.access_token_revoked,
                refresh_token_cleared=result.refresh_token_cleared,
            )
        return result

    def _get_user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise UserNotFound("User not found")
        return user

    async def get_profile(self, user_id: int) -> SessionPayload:
        return self.to_payload(self._get_user(user_id))

    async def update_profile(self, user_id: int, fields: dict[str, Any]) -> SessionPayload:
        """Apply whitelisted profile fields; values of the wrong type are skipped."""
        changes: dict[str, Any] = {}
        nickname = fields.get("nickname")
        if isinstance(nickname, str):
            changes["nickname"] = nickname
        avatar_url = fields.get("avatarUrl")
        if isinstance(avatar_url, str):
            changes["avatar_url"] = avatar_url
        gender = fields.get("gender")
        if isinstance(gender, bool):
            changes["gender"] = gender
        phone = fields.get("phone")
        if isinstance(phone, str):
            changes["phone"] = phone.strip() or None

        if not changes:
            return await self.get_profile(user_id)
        user = self.store.update_user(user_id, **changes)
        if not user:
            raise UserNotFound("User not found")
        self.logger.info("profile_updated", user_id=user_id, fields=sorted(changes))
        return self.to_payload(user)

    async def get_settings(self, user_id: int) -> UserSettings:
        self._get_user(user_id)
        return self.store.get_user_settings(user_id) or UserSettings(user_id=user_id)

    async def update_settings(
        self,
        user_id: int,
        *,
        important_date_reminder: Optional[bool] = None,
        inspiration_push: Optional[bool] = None,
    ) -> UserSettings:
        self._get_user(user_id)
        return self.store.set_user_settings(
            user_id,
            important_date_reminder=important_date_reminder,
            inspiration_push=inspiration_push,
        )
