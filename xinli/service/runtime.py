from __future__ import annotations

import threading

from xinli.config import get_settings, reset_settings_cache
from xinli.logging import get_logger
from xinli.service.auth import SessionService
from xinli.service.gate import RequestGate
from xinli.service.identity import IdentityProvider
from xinli.service.session_state import (
    get_refresh_store,
    get_revocation_list,
    reset_session_state,
)
from xinli.service.tokens import TokenCodec
from xinli.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info("runtime_init_started", test_mode=self.settings.test_mode)

        self.store = MemoryStore()
        self.refresh_store = get_refresh_store()
        self.revocations = get_revocation_list()
        self.tokens = TokenCodec(self.settings, self.refresh_store)
        self.identity = IdentityProvider(self.settings)
        self.sessions = SessionService(
            self.store,
            self.tokens,
            self.revocations,
            self.identity,
            self.settings,
        )
        self.gate = RequestGate(self.tokens, self.revocations)

        logger.info(
            "runtime_initialized",
            stub_login=self.settings.stub_login_configured,
            identity_provider_configured=bool(
                self.settings.wechat_app_id and self.settings.wechat_app_secret
            ),
            access_ttl_seconds=self.settings.jwt_access_ttl_seconds,
            refresh_ttl_seconds=self.settings.jwt_refresh_ttl_seconds,
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked read is the fast path once built.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton and token state for isolated test runs."""

    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        reset_session_state()
        runtime = Runtime()
        return runtime
