"""Tests for replay: header merge, 403 refresh-and-retry, transient retries, format errors."""
import asyncio
import json
import time

import pytest

from apiscout.config import MAX_BODY_CHARS
from apiscout.session.errors import (
    AuthorizationError,
    NetworkError,
    ScoutSignal,
    UpstreamFormatError,
    UpstreamStatusError,
)
from apiscout.session.headers import header_value
from apiscout.session.manager import SessionManager
from apiscout.session.models import Credential, RequestSpec
from database.db_manager import DatabaseManager, exchange_to_record
from fakes import BASE, ITEMS_URL, FakeAPIResponse, PlaywrightError, make_site

CREDENTIAL = Credential(username="alice", password="s3cret")


@pytest.mark.asyncio
async def test_replay_sends_session_headers(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    exchange = await manager.replay(session, RequestSpec(url=ITEMS_URL, expect="json"))

    assert exchange.status == 200
    assert exchange.json() == {"items": [1, 2, 3]}
    sent = app.requests[-1]["headers"]
    assert header_value(sent, "X-CSRFToken") == "csrf-0"
    assert header_value(sent, "X-Requested-With") == "XMLHttpRequest"
    assert "Chrome/" in header_value(sent, "User-Agent")
    # Cookies travel through the context jar, the recorded exchange shows them
    assert "sessionid=" in exchange.request_headers["Cookie"]
    assert session.exchanges[-1] is exchange
    assert exchange.resource_type == "replay"


@pytest.mark.asyncio
async def test_replay_header_overrides_win_case_insensitively(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.routes[f"{BASE}/api/echo"] = lambda call: FakeAPIResponse(call["url"], body=json.dumps(call["headers"]))

    spec = RequestSpec(
        url=f"{BASE}/api/echo",
        headers={"x-requested-with": "Fetch", "Accept": None, "X-Trace": "1"},
    )
    exchange = await manager.replay(session, spec)
    sent = exchange.json()

    assert header_value(sent, "X-Requested-With") == "Fetch"
    assert header_value(sent, "Accept") is None
    assert sent["X-Trace"] == "1"
    assert [k for k in sent if k.lower() == "x-requested-with"] == ["x-requested-with"]


@pytest.mark.asyncio
async def test_replay_after_refresh_uses_new_token(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.rotate_on_token_fetch = True

    await manager.refresh_token(session)
    assert session.auth.csrf_token == "csrf-1"
    assert session.auth.generation == 2

    exchange = await manager.replay(session, RequestSpec(url=ITEMS_URL))
    assert exchange.status == 200
    assert header_value(app.requests[-1]["headers"], "X-CSRFToken") == "csrf-1"


@pytest.mark.asyncio
async def test_single_403_refreshes_and_retries(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.rotate_csrf()  # server-side rotation; session still holds csrf-0

    exchange = await manager.replay(session, RequestSpec(url=ITEMS_URL))

    assert exchange.status == 200
    assert session.refresh_count == 1
    assert app.token_page_hits == 1
    statuses = [e.status for e in session.exchanges if e.url == ITEMS_URL]
    assert statuses == [403, 200]


@pytest.mark.asyncio
async def test_two_consecutive_403s_raise_authorization_error(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.script(ITEMS_URL, 403, 403)

    with pytest.raises(AuthorizationError) as excinfo:
        await manager.replay(session, RequestSpec(url=ITEMS_URL))

    assert excinfo.value.status == 403
    assert excinfo.value.signal is ScoutSignal.AUTHORIZATION
    assert json.loads(excinfo.value.raw_body) == {"error": 403}
    assert session.refresh_count == 1


@pytest.mark.asyncio
async def test_unparseable_body_raises_format_error_with_raw_body(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    raw = "<html><body>Maintenance</body></html>"
    app.routes[f"{BASE}/api/broken"] = lambda call: FakeAPIResponse(
        call["url"], body=raw, headers={"content-type": "text/html"}
    )

    with pytest.raises(UpstreamFormatError) as excinfo:
        await manager.replay(session, RequestSpec(url=f"{BASE}/api/broken", expect="json"))

    assert excinfo.value.raw_body == raw
    assert excinfo.value.status == 200


@pytest.mark.asyncio
async def test_other_http_errors_surface_immediately(manager, site, app):
    session = await manager.start(site, CREDENTIAL)

    with pytest.raises(UpstreamStatusError) as excinfo:
        await manager.replay(session, RequestSpec(url=f"{BASE}/api/nowhere"))

    assert excinfo.value.status == 404
    assert excinfo.value.raw_body == "not found"
    assert session.refresh_count == 0


@pytest.mark.asyncio
async def test_transient_status_is_retried(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.script(ITEMS_URL, 503, 429)

    exchange = await manager.replay(session, RequestSpec(url=ITEMS_URL))

    assert exchange.status == 200
    assert [e.status for e in session.exchanges if e.url == ITEMS_URL] == [503, 429, 200]


@pytest.mark.asyncio
async def test_network_errors_exhaust_retries(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    manager.max_retries = 2
    app.script(ITEMS_URL, *[PlaywrightError("net::ERR_CONNECTION_RESET")] * 3)

    with pytest.raises(NetworkError):
        await manager.replay(session, RequestSpec(url=ITEMS_URL))

    assert len([r for r in app.requests if r["url"] == ITEMS_URL]) == 3
    assert app.scripted[ITEMS_URL] == []


@pytest.mark.asyncio
async def test_network_error_then_success(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.script(ITEMS_URL, PlaywrightError("net::ERR_TIMED_OUT"))

    exchange = await manager.replay(session, RequestSpec(url=ITEMS_URL))
    assert exchange.status == 200


@pytest.mark.asyncio
async def test_expired_jwt_refreshes_before_sending(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    session.auth.expires_at = time.time() - 60

    await manager.replay(session, RequestSpec(url=ITEMS_URL))

    assert app.token_page_hits == 1
    assert session.refresh_count == 1


@pytest.mark.asyncio
async def test_json_body_is_serialized(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    app.routes[f"{BASE}/api/create"] = lambda call: FakeAPIResponse(call["url"], status=201, body=call["data"])

    exchange = await manager.replay(
        session, RequestSpec(url=f"{BASE}/api/create", method="post", json_body={"name": "x"})
    )

    assert exchange.method == "POST"
    assert exchange.request_body == '{"name": "x"}'
    assert exchange.json() == {"name": "x"}
    assert header_value(exchange.request_headers, "Content-Type") == "application/json"


@pytest.mark.asyncio
async def test_replay_on_closed_session_fails(manager, site):
    session = await manager.start(site, CREDENTIAL)
    await manager.close(session)

    with pytest.raises(RuntimeError):
        await manager.replay(session, RequestSpec(url=ITEMS_URL))


@pytest.mark.asyncio
async def test_replays_on_independent_sessions_run_concurrently(manager, app, browser):
    first = await manager.start(make_site(name="one"), CREDENTIAL)
    second = await manager.start(make_site(name="two"), CREDENTIAL)
    assert first.context is not second.context

    results = await asyncio.gather(
        manager.replay(first, RequestSpec(url=ITEMS_URL)),
        manager.replay(second, RequestSpec(url=ITEMS_URL)),
    )
    assert [r.status for r in results] == [200, 200]


@pytest.mark.asyncio
async def test_large_json_replay_keeps_the_whole_body(manager, site, app):
    session = await manager.start(site, CREDENTIAL)
    payload = json.dumps({"blob": "x" * (MAX_BODY_CHARS + 500_000)})
    app.routes[f"{BASE}/api/export"] = lambda call: FakeAPIResponse(call["url"], body=payload)

    exchange = await manager.replay(session, RequestSpec(url=f"{BASE}/api/export", expect="json"))

    assert exchange.response_body == payload
    assert not exchange.body_truncated
    assert len(exchange.json()["blob"]) == MAX_BODY_CHARS + 500_000


@pytest.mark.asyncio
async def test_custom_csrf_header_is_redacted_before_storage(browser, app, tmp_path):
    site = make_site(csrf_header="X-App-Csrf", secret_headers=["X-Api-Key"])
    manager = SessionManager(browser, retry_delay=0)
    session = await manager.start(site, CREDENTIAL)
    app.routes[f"{BASE}/api/profile"] = lambda call: FakeAPIResponse(call["url"], body='{"ok": true}')

    exchange = await manager.replay(
        session, RequestSpec(url=f"{BASE}/api/profile", headers={"X-Api-Key": "key-123"})
    )
    assert exchange.request_headers["X-App-Csrf"] == "csrf-0"

    record = exchange_to_record(exchange, site.SITE_NAME, site.sensitive_headers())
    assert "csrf-0" not in record["request_headers"]
    assert "key-123" not in record["request_headers"]

    path = tmp_path / "scout.db"
    DatabaseManager(str(path)).save_exchanges([exchange], site.SITE_NAME, site.sensitive_headers())
    raw = path.read_bytes()
    assert b"key-123" not in raw
    assert b'"X-App-Csrf": "csrf-0"' not in raw
