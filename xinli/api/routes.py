from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from xinli.api.schemas import (
    CodeLoginRequest,
    Envelope,
    ExternalLoginRequest,
    LoginResponse,
    LogoutResponse,
    TokenRefreshRequest,
    TokenRefreshResponse,
    UserResponse,
    UserSettingsRequest,
    UserSettingsResponse,
)
from xinli.logging import get_correlation_id, get_logger
from xinli.service.gate import extract_bearer_token
from xinli.service.runtime import get_runtime
from xinli.service.tokens import SessionPayload

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _ok(data: Any) -> Envelope:
    envelope = Envelope(status="ok", data=data)
    request_id = get_correlation_id()
    if request_id:
        envelope.request_id = request_id
    return envelope


async def get_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> SessionPayload:
    """Admit the request only with a live access token; exposes the user on request.state."""
    runtime = get_runtime()
    payload = runtime.gate.authenticate(authorization)
    request.state.user = payload
    return payload


@router.post("/auth/login/sms", response_model=Envelope, tags=["auth"])
async def login_with_code(body: CodeLoginRequest):
    runtime = get_runtime()
    result = await runtime.sessions.login_with_code(body.phone, body.code)
    return _ok(LoginResponse.from_result(result))


@router.post("/auth/login/wechat", response_model=Envelope, tags=["auth"])
async def login_with_external_identity(body: ExternalLoginRequest):
    runtime = get_runtime()
    result = await runtime.sessions.login_with_external_identity(
        body.code, nickname_hint=body.nickname, avatar_hint=body.avatar_url
    )
    return _ok(LoginResponse.from_result(result))


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def get_current_user(principal: SessionPayload = Depends(get_user)):
    """Current profile, read from the store rather than the token snapshot."""
    runtime = get_runtime()
    profile = await runtime.sessions.get_profile(principal.id)
    return _ok(UserResponse.from_payload(profile))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_access_token(body: TokenRefreshRequest):
    runtime = get_runtime()
    access_token = await runtime.sessions.refresh_access_token(body.refresh_token)
    return _ok(TokenRefreshResponse(access_token=access_token))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(request: Request, authorization: Optional[str] = Header(None)):
    """Always succeeds. The body is read loosely so a malformed one cannot block revocation."""
    runtime = get_runtime()
    refresh_token = None
    try:
        body = await request.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("refreshToken"), str):
        refresh_token = body["refreshToken"]
    await runtime.sessions.logout(extract_bearer_token(authorization), refresh_token)
    return _ok(LogoutResponse(success=True))


async def _read_profile_fields(request: Request) -> dict[str, Any]:
    try:
        fields = await request.json()
    except ValueError:
        raise _http_error("validation_error", "request body must be JSON", status_code=400)
    if not isinstance(fields, dict):
        raise _http_error(
            "validation_error", "request body must be a JSON object", status_code=400
        )
    return fields


@router.put("/auth/profile", response_model=Envelope, tags=["auth"])
@router.post("/user/profile", response_model=Envelope, tags=["user"])
async def update_profile(request: Request, principal: SessionPayload = Depends(get_user)):
    """Whitelisted profile update; unknown keys and mistyped values are ignored."""
    runtime = get_runtime()
    fields = await _read_profile_fields(request)
    profile = await runtime.sessions.update_profile(principal.id, fields)
    return _ok(UserResponse.from_payload(profile))


@router.get("/user/settings", response_model=Envelope, tags=["user"])
async def get_user_settings(principal: SessionPayload = Depends(get_user)):
    runtime = get_runtime()
    settings = await runtime.sessions.get_settings(principal.id)
    return _ok(UserSettingsResponse.from_settings(settings))


@router.post("/user/settings", response_model=Envelope, tags=["user"])
async def update_user_settings(
    body: UserSettingsRequest, principal: SessionPayload = Depends(get_user)
):
    runtime = get_runtime()
    settings = await runtime.sessions.update_settings(
        principal.id,
        important_date_reminder=body.important_date_reminder,
        inspiration_push=body.inspiration_push,
    )
    return _ok(UserSettingsResponse.from_settings(settings))
