from __future__ import annotations

import os
import re
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from xinli.logging import get_logger

logger = get_logger(__name__)

# Fixed verification code accepted when no STUB_PHONE/STUB_CODE pair is set
FALLBACK_LOGIN_CODE = "123456"

_DURATION_UNITS = {"s": 1, "m": 60, "h": 60 * 60, "d": 60 * 60 * 24}
_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)


def parse_duration(value: Any) -> int:
    """Parse ``"3600"``, ``"15m"``, ``"2h"`` or ``"7d"`` into seconds."""

    if isinstance(value, bool):
        raise ValueError("duration must be a number or a string like '2h'")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        amount, unit = match.groups()
        seconds = int(amount) * _DURATION_UNITS[(unit or "s").lower()]
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the session core and its HTTP surface."""

    # Token signing
    jwt_access_secret: str | None = env_field(None, "JWT_ACCESS_SECRET")
    jwt_access_ttl_seconds: int = env_field(
        "2h",
        "JWT_ACCESS_EXPIRES_IN",
        description="Access token lifetime, seconds or '<n>s|m|h|d'",
        validate_default=True,
    )
    jwt_refresh_secret: str | None = env_field(None, "JWT_REFRESH_SECRET")
    jwt_refresh_ttl_seconds: int = env_field(
        "7d",
        "JWT_REFRESH_EXPIRES_IN",
        description="Refresh token lifetime, seconds or '<n>s|m|h|d'",
        validate_default=True,
    )
    jwt_issuer: str = env_field("xinli", "JWT_ISSUER")
    jwt_leeway_seconds: int = env_field(
        0, "JWT_LEEWAY_SECONDS", description="Allowed clock skew when checking exp"
    )
    # Code login
    stub_phone: str | None = env_field(None, "STUB_PHONE")
    stub_code: str | None = env_field(None, "STUB_CODE")
    # Mini-program identity provider
    wechat_app_id: str | None = env_field(None, "WECHAT_MINI_APPID")
    wechat_app_secret: str | None = env_field(None, "WECHAT_MINI_SECRET")
    wechat_code2session_url: str = env_field(
        "https://api.weixin.qq.com/sns/jscode2session", "WECHAT_CODE2SESSION_URL"
    )
    wechat_timeout_seconds: float = env_field(10.0, "WECHAT_TIMEOUT_SECONDS")
    # HTTP
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    build_sha: str = env_field("dev", "BUILD_SHA")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow generated signing secrets and runtime resets for tests",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def stub_login_configured(self) -> bool:
        return bool(self.stub_phone and self.stub_code)

    @field_validator("jwt_access_ttl_seconds", "jwt_refresh_ttl_seconds", mode="before")
    @classmethod
    def _parse_ttl(cls, value: Any) -> int:
        return parse_duration(value)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("stub_phone", "stub_code", "wechat_app_id", "wechat_app_secret")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _ensure_jwt_secrets(self) -> "Settings":
        if not self.jwt_access_secret or not self.jwt_refresh_secret:
            if not self.test_mode:
                raise ValueError(
                    "JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be set outside TEST_MODE"
                )
            # Per-process secrets: every token dies with the process, like the registries
            if not self.jwt_access_secret:
                self.jwt_access_secret = secrets.token_urlsafe(48)
            if not self.jwt_refresh_secret:
                self.jwt_refresh_secret = secrets.token_urlsafe(48)
            logger.warning("jwt_secrets_generated", test_mode=True)
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("access and refresh tokens must use distinct secrets")
        if self.jwt_leeway_seconds < 0:
            raise ValueError("JWT_LEEWAY_SECONDS must not be negative")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
