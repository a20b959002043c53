from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from xinli.service.auth import LoginResult
from xinli.service.tokens import SessionPayload
from xinli.storage.models import UserSettings

# Stable error codes; clients branch on these, not on messages
_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "not_found",
    "validation_error",
    "conflict",
    "upstream_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class _CamelModel(BaseModel):
    # Clients send and receive camelCase; snake_case is accepted too
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)


class CodeLoginRequest(_CamelModel):
    phone: str = Field(..., max_length=32)
    code: str = Field(..., max_length=16)


class ExternalLoginRequest(_CamelModel):
    code: str = Field(..., max_length=256)
    nickname: Optional[str] = Field(default=None, max_length=64)
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl", max_length=1024)


class TokenRefreshRequest(_CamelModel):
    refresh_token: str = Field(..., alias="refreshToken", max_length=4096)


class UserSettingsRequest(_CamelModel):
    important_date_reminder: Optional[bool] = Field(default=None, alias="importantDateReminder")
    inspiration_push: Optional[bool] = Field(default=None, alias="inspirationPush")


class UserResponse(_CamelModel):
    id: int
    phone: Optional[str] = None
    nickname: str
    gender: Optional[bool] = None
    meet_days: int = Field(..., alias="meetDays")
    avatar_url: str = Field(default="", alias="avatarUrl")
    login_provider: Optional[str] = Field(default=None, alias="loginProvider")
    external_open_id: Optional[str] = Field(default=None, alias="externalOpenId")
    external_union_id: Optional[str] = Field(default=None, alias="externalUnionId")

    @classmethod
    def from_payload(cls, payload: SessionPayload) -> "UserResponse":
        return cls(
            id=payload.id,
            phone=payload.phone,
            nickname=payload.nickname or "",
            gender=payload.gender,
            meet_days=payload.meet_days or 1,
            avatar_url=payload.avatar_url or "",
            login_provider=payload.login_provider,
            external_open_id=payload.external_open_id,
            external_union_id=payload.external_union_id,
        )


class LoginResponse(_CamelModel):
    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")
    user: UserResponse

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            user=UserResponse.from_payload(result.user),
        )


class TokenRefreshResponse(_CamelModel):
    access_token: str = Field(..., alias="accessToken")


class LogoutResponse(BaseModel):
    success: bool = True


class UserSettingsResponse(_CamelModel):
    important_date_reminder: bool = Field(..., alias="importantDateReminder")
    inspiration_push: bool = Field(..., alias="inspirationPush")

    @classmethod
    def from_settings(cls, settings: UserSettings) -> "UserSettingsResponse":
        return cls(
            important_date_reminder=settings.important_date_reminder,
            inspiration_push=settings.inspiration_push,
        )
