from __future__ import annotations

import threading
from dataclasses import fields as dataclass_fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from xinli.logging import get_logger
from xinli.storage.errors import ConstraintViolation
from xinli.storage.models import LoginProvider, User, UserSettings

_USER_FIELDS = frozenset(f.name for f in dataclass_fields(User)) - {"id", "created_at"}


class MemoryStore:
    """In-process user store standing in for the relational database."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.settings: Dict[int, UserSettings] = {}
        self._user_id_seq: int = 1
        # RLock so helpers can be called while a public method holds it
        self._data_lock = threading.RLock()

    def _next_user_id(self) -> int:
        user_id = self._user_id_seq
        self._user_id_seq += 1
        return user_id

    def _ensure_phone_free(self, phone: Optional[str], user_id: Optional[int]) -> None:
        if not phone:
            return
        for existing in self.users.values():
            if existing.phone == phone and existing.id != user_id:
                raise ConstraintViolation("phone already exists", {"field": "phone"})

    # users
    def create_user(self, **values: Any) -> User:
        unknown = set(values) - _USER_FIELDS
        if unknown:
            raise TypeError(f"unknown user fields: {sorted(unknown)}")
        with self._data_lock:
            self._ensure_phone_free(values.get("phone"), None)
            user = User(id=self._next_user_id(), **values)
            self.users[user.id] = user
            self.logger.info(
                "user_created", user_id=user.id, login_provider=user.login_provider.value
            )
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_phone(self, phone: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.phone == phone), None)

    def find_user_by_external_identity(
        self, open_id: str, union_id: Optional[str] = None
    ) -> Optional[User]:
        """Match on union id first when given, otherwise on open id."""
        with self._data_lock:
            if union_id:
                for user in self.users.values():
                    if user.external_union_id == union_id:
                        return user
            return next(
                (u for u in self.users.values() if u.external_open_id == open_id), None
            )

    def upsert_user_by_phone(self, phone: str, *, login_provider: LoginProvider) -> User:
        with self._data_lock:
            user = self.get_user_by_phone(phone)
            if user is None:
                return self.create_user(phone=phone, login_provider=login_provider)
            user.login_provider = login_provider
            return user

    def update_user(self, user_id: int, **changes: Any) -> Optional[User]:
        unknown = set(changes) - _USER_FIELDS
        if unknown:
            raise TypeError(f"unknown user fields: {sorted(unknown)}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if "phone" in changes:
                self._ensure_phone_free(changes["phone"], user_id)
            for name, value in changes.items():
                setattr(user, name, value)
            return user

    # settings
    def get_user_settings(self, user_id: int) -> Optional[UserSettings]:
        with self._data_lock:
            return self.settings.get(user_id)

    def set_user_settings(
        self,
        user_id: int,
        *,
        important_date_reminder: Optional[bool] = None,
        inspiration_push: Optional[bool] = None,
    ) -> UserSettings:
        with self._data_lock:
            current = self.settings.get(user_id) or UserSettings(user_id=user_id)
            if important_date_reminder is not None:
                current.important_date_reminder = important_date_reminder
            if inspiration_push is not None:
                current.inspiration_push = inspiration_push
            current.updated_at = datetime.now(timezone.utc)
            self.settings[user_id] = current
            return current
