from xinli.logging import (
    _add_correlation_id,
    _redact_credentials,
    correlation_id_var,
    mask_secret,
    set_correlation_id,
)


def test_mask_secret():
    assert mask_secret("abc") == "***"
    assert mask_secret("eyJhbGciOi.payload.sig") == "ey***ig"


def test_redacts_credential_keys():
    event = _redact_credentials(
        None,
        "info",
        {
            "event": "login",
            "access_token": "eyJhbGciOi.payload.sig",
            "session_key": "session-key-value",
            "phone": "13800000000",
            "code": "123456",
            "error_code": "unauthorized",
            "status_code": 401,
        },
    )
    assert event["access_token"] == "ey***ig"
    assert event["session_key"] == "se***ue"
    assert event["phone"] == "13***00"
    assert event["code"] == "12***56"
    assert event["error_code"] == "unauthorized"
    assert event["status_code"] == 401


def test_correlation_id_added_when_set():
    token = correlation_id_var.set(None)
    try:
        assert "correlation_id" not in _add_correlation_id(None, "info", {"event": "x"})
        cid = set_correlation_id()
        assert _add_correlation_id(None, "info", {"event": "x"})["correlation_id"] == cid
    finally:
        correlation_id_var.reset(token)
