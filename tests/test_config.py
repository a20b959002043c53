import pytest

from xinli.config import Settings, get_settings, parse_duration, reset_settings_cache

SECRETS = {
    "jwt_access_secret": "access-secret-for-config-tests",
    "jwt_refresh_secret": "refresh-secret-for-config-tests",
}


@pytest.mark.parametrize(
    "value, seconds",
    [
        ("3600", 3600),
        (3600, 3600),
        ("90s", 90),
        ("15m", 15 * 60),
        ("2h", 2 * 60 * 60),
        ("7d", 7 * 24 * 60 * 60),
        (" 2H ", 2 * 60 * 60),
    ],
)
def test_parse_duration(value, seconds):
    assert parse_duration(value) == seconds


@pytest.mark.parametrize("value", ["", "abc", "2w", "-5", "0", 0, True, "1.5h"])
def test_parse_duration_rejects(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_default_lifetimes():
    settings = Settings(**SECRETS)
    assert settings.jwt_access_ttl_seconds == 2 * 60 * 60
    assert settings.jwt_refresh_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.jwt_issuer == "xinli"


def test_missing_secrets_rejected_outside_test_mode():
    with pytest.raises(ValueError):
        Settings(test_mode=False)


def test_missing_secrets_generated_in_test_mode():
    settings = Settings(test_mode=True)
    assert settings.jwt_access_secret
    assert settings.jwt_refresh_secret
    assert settings.jwt_access_secret != settings.jwt_refresh_secret


def test_shared_secret_rejected():
    with pytest.raises(ValueError):
        Settings(jwt_access_secret="same", jwt_refresh_secret="same")


def test_negative_leeway_rejected():
    with pytest.raises(ValueError):
        Settings(jwt_leeway_seconds=-1, **SECRETS)


def test_stub_login_requires_both_values():
    assert not Settings(stub_phone="13800000000", **SECRETS).stub_login_configured
    assert not Settings(stub_phone="13800000000", stub_code="  ", **SECRETS).stub_login_configured
    assert Settings(stub_phone="13800000000", stub_code="1234", **SECRETS).stub_login_configured


def test_from_env_reads_named_variables(monkeypatch):
    monkeypatch.setenv("JWT_ACCESS_SECRET", "env-access")
    monkeypatch.setenv("JWT_REFRESH_SECRET", "env-refresh")
    monkeypatch.setenv("JWT_ACCESS_EXPIRES_IN", "15m")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("WECHAT_MINI_APPID", "wx-app")
    reset_settings_cache()
    try:
        settings = get_settings()
        assert settings.jwt_access_secret == "env-access"
        assert settings.jwt_access_ttl_seconds == 15 * 60
        assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]
        assert settings.wechat_app_id == "wx-app"
        assert get_settings() is settings
    finally:
        reset_settings_cache()
