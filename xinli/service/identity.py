from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from xinli.config import Settings
from xinli.logging import get_logger
from xinli.service.errors import ProviderError

logger = get_logger(__name__)


@dataclass
class ExternalSession:
    open_id: str
    session_key: str
    union_id: Optional[str] = None


class IdentityProvider:
    """Mini-program ``code2session`` exchange.

    Turns the one-shot login code handed to the client into the user's
    stable identifiers. Every failure surfaces as ``ProviderError``.
    """

    def __init__(
        self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._code_registry: dict[str, dict] = {}
        self.logger = logger

    def register_code(self, code: str, payload: dict) -> None:
        """Record a canned exchange result for testing or offline flows."""

        self._code_registry[code] = payload

    async def code_to_session(self, code: str) -> ExternalSession:
        registered = self._code_registry.pop(code, None)
        if registered is not None:
            return self._parse_session(registered)

        app_id = self.settings.wechat_app_id
        app_secret = self.settings.wechat_app_secret
        if not app_id or not app_secret:
            self.logger.error("code2session_credentials_missing")
            raise ProviderError("identity provider credentials are not configured")

        params = {
            "appid": app_id,
            "secret": app_secret,
            "js_code": code,
            "grant_type": "authorization_code",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.wechat_timeout_seconds,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    self.settings.wechat_code2session_url, params=params
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "code2session_http_error",
                status_code=exc.response.status_code,
                error=str(exc),
            )
            raise ProviderError("identity provider request failed") from exc
        except httpx.HTTPError as exc:
            self.logger.error("code2session_transport_error", error=str(exc))
            raise ProviderError("identity provider unreachable") from exc
        except ValueError as exc:
            self.logger.error("code2session_parse_error", error=str(exc))
            raise ProviderError("identity provider returned invalid JSON") from exc

        if not isinstance(data, dict):
            self.logger.error("code2session_invalid_format", type=type(data).__name__)
            raise ProviderError("identity provider returned an unexpected payload")
        # The provider reports failures in-band with HTTP 200
        if data.get("errcode"):
            self.logger.error(
                "code2session_rejected", errcode=data.get("errcode"), errmsg=data.get("errmsg")
            )
            raise ProviderError(
                f"code2Session failed: {data.get('errmsg') or 'unknown error'} "
                f"({data.get('errcode')})",
                detail={"errcode": data.get("errcode")},
            )
        return self._parse_session(data)

    def _parse_session(self, data: dict) -> ExternalSession:
        open_id = data.get("openid") or ""
        session_key = data.get("session_key") or ""
        if not session_key:
            self.logger.error("code2session_missing_fields", has_openid=bool(open_id))
            raise ProviderError("code2Session response missing session_key")
        self.logger.info("code2session_success", has_unionid=bool(data.get("unionid")))
        return ExternalSession(
            open_id=open_id,
            session_key=session_key,
            union_id=data.get("unionid") or None,
        )
