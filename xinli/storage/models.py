from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

DEFAULT_NICKNAME = "心礼用户"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoginProvider(str, Enum):
    """How the user last signed in."""

    SMS = "sms"
    WECHAT = "wechat"


@dataclass
class User:
    id: int
    phone: Optional[str] = None
    nickname: str = DEFAULT_NICKNAME
    gender: Optional[bool] = None
    avatar_url: str = ""
    login_provider: LoginProvider = LoginProvider.SMS
    external_open_id: Optional[str] = None
    external_union_id: Optional[str] = None
    external_session_key: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class UserSettings:
    user_id: int
    important_date_reminder: bool = True
    inspiration_push: bool = False
    updated_at: datetime = field(default_factory=_utcnow)
