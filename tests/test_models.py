"""Tests for the session data model."""
import time

import pytest

from apiscout.session.errors import UpstreamFormatError
from apiscout.session.models import (
    AuthState,
    CapturedExchange,
    Credential,
    RequestSpec,
    Session,
    parse_cookie_string,
)
from fakes import make_site


def _exchange(body='{"a": 1}', headers=None, status=200):
    return CapturedExchange(
        method="GET",
        url="https://a.test/api/items/7?page=2",
        request_headers={"Accept": "application/json"},
        request_body=None,
        status=status,
        response_headers=headers or {"Content-Type": "application/json; charset=utf-8"},
        response_body=body,
        timestamp=1700000000.0,
        seq=4,
    )


def test_exchange_json_and_properties():
    exchange = _exchange()
    assert exchange.json() == {"a": 1}
    assert exchange.content_type.startswith("application/json")
    assert exchange.path == "/api/items/7"
    assert exchange.ok


def test_exchange_json_failure_carries_raw_body():
    raw = "<!doctype html><p>Please log in</p>"
    with pytest.raises(UpstreamFormatError) as excinfo:
        _exchange(body=raw, status=200).json()
    assert excinfo.value.raw_body == raw
    assert excinfo.value.url.endswith("/api/items/7?page=2")


def test_exchange_to_dict():
    data = _exchange().to_dict()
    assert data["seq"] == 4
    assert data["request_headers"] == {"Accept": "application/json"}
    assert data["observed_at"].startswith("2023-11-1")


def test_parse_cookie_string():
    cookies = parse_cookie_string("sessionid=abc; csrftoken=x=y ;; bad; =nameless", "https://a.test")
    assert cookies == [
        {"name": "sessionid", "value": "abc", "url": "https://a.test"},
        {"name": "csrftoken", "value": "x=y", "url": "https://a.test"},
    ]


def test_credential_from_env(monkeypatch):
    monkeypatch.setenv("APISCOUT_SHOP_USERNAME", "alice")
    monkeypatch.setenv("APISCOUT_SHOP_PASSWORD", "s3cret")
    monkeypatch.setenv("APISCOUT_SHOP_TOTP_SEED", "JBSWY3DPEHPK3PXP")
    monkeypatch.delenv("APISCOUT_SHOP_COOKIE", raising=False)

    credential = Credential.from_env("apiscout_shop_")

    assert credential.username == "alice"
    assert credential.has_login
    assert credential.cookie is None
    assert not credential.is_empty


def test_credential_repr_masks_secrets():
    text = repr(Credential(cookie="sid=1", username="alice", password="s3cret", totp_seed="SEED"))
    assert "s3cret" not in text
    assert "sid=1" not in text
    assert "SEED" not in text
    assert "alice" in text


def test_auth_state_expiry():
    auth = AuthState()
    assert not auth.is_expired()
    auth.expires_at = time.time() + 10
    assert auth.is_expired()  # inside the 30s skew
    assert not auth.is_expired(skew=0)


def test_request_spec_normalizes_method():
    assert RequestSpec(url="https://a.test", method="post").method == "POST"
    with pytest.raises(ValueError):
        RequestSpec(url="https://a.test", expect="xml")


def test_session_log_drops_oldest_beyond_limit():
    session = Session(make_site(), context=None, page=None, log_limit=2)
    for body in ("1", "2", "3"):
        session.record(_exchange(body=body))

    assert [e.response_body for e in session.exchanges] == ["2", "3"]


def test_session_log_unbounded_when_limit_is_zero():
    session = Session(make_site(), context=None, page=None, log_limit=0)
    for _ in range(5):
        session.record(_exchange())

    assert len(session.exchanges) == 5


def test_exchange_to_dict_reports_truncation():
    assert _exchange().to_dict()["body_truncated"] is False
