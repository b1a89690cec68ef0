"""Tests for site profiles and token extraction from pages."""
import json

import pytest

from apiscout.sites import GenericSite, load_profile
from apiscout.sites.base_site import LOGIN_OUTCOME_FAILED, LOGIN_OUTCOME_LOGGED_IN, LOGIN_OUTCOME_OTP
from fakes import HOME_URL, LOGIN_URL, SITE_PROFILE, FakeBrowser, FakeWebApp, make_site


async def _page(app=None):
    browser = FakeBrowser(app or FakeWebApp())
    context = await browser.new_context()
    return await context.new_page()


def test_from_profile_maps_keys():
    site = make_site(app_headers={"X-App": "1"}, csrf_names=["x-token"])
    assert site.SITE_NAME == "testapp"
    assert site.LOGIN_URL == LOGIN_URL
    assert site.APP_HEADERS == {"X-App": "1"}
    assert site.CSRF_NAMES == ["x-token"]
    assert site.CSRF_HEADER == "X-CSRFToken"


def test_profiles_do_not_share_mutable_defaults():
    first = GenericSite.from_profile({"name": "a", "base_url": "https://a.test"})
    second = GenericSite.from_profile({"name": "b", "base_url": "https://b.test"})
    first.APP_HEADERS["X"] = "1"
    assert second.APP_HEADERS == {}


def test_from_profile_rejects_unknown_and_missing_keys():
    with pytest.raises(ValueError, match="Unknown site profile keys"):
        GenericSite.from_profile({"name": "a", "base_url": "https://a.test", "colour": "red"})
    with pytest.raises(ValueError, match="at least"):
        GenericSite.from_profile({"name": "a"})


def test_load_profile(tmp_path):
    path = tmp_path / "site.json"
    path.write_text(json.dumps(SITE_PROFILE))
    site = load_profile(str(path))
    assert site.TOKEN_PAGE_URL == SITE_PROFILE["token_page_url"]
    assert repr(site) == f"testapp(url={HOME_URL})"


def test_on_login_page_uses_marker():
    site = make_site(login_url_marker="/auth/")
    assert site.on_login_page("https://app.test/auth/sso")
    assert not site.on_login_page(LOGIN_URL)
    assert not make_site(login_url="").on_login_page(LOGIN_URL)


@pytest.mark.asyncio
async def test_login_outcomes():
    site = make_site()
    app = FakeWebApp(otp_code="000000")
    page = await _page(app)

    await site.submit_login(page, "alice", "wrong")
    assert await site.wait_for_login_outcome(page, timeout=10) == LOGIN_OUTCOME_FAILED

    await site.submit_login(page, "alice", "s3cret")
    assert await site.wait_for_login_outcome(page, timeout=10) == LOGIN_OUTCOME_OTP

    await site.submit_otp(page, "000000")
    assert await site.wait_for_logged_in(page, timeout=10)
    assert await site.is_logged_in(page)


@pytest.mark.asyncio
async def test_login_outcome_without_otp():
    site = make_site()
    page = await _page()
    await site.submit_login(page, "alice", "s3cret")
    assert await site.wait_for_login_outcome(page, timeout=10) == LOGIN_OUTCOME_LOGGED_IN


@pytest.mark.asyncio
async def test_extract_tokens_from_page():
    site = make_site()
    page = await _page()
    await site.submit_login(page, "alice", "s3cret")

    tokens = await site.extract_tokens(page, [])

    assert tokens == {"csrf": "csrf-0", "jwt": None}


@pytest.mark.asyncio
async def test_extract_tokens_falls_back_to_cookie():
    site = make_site(csrf_cookie_name="app_csrf")
    page = await _page()

    tokens = await site.extract_tokens(page, [{"name": "app_csrf", "value": "from-cookie"}])

    assert tokens["csrf"] == "from-cookie"


def test_parse_token_response_json():
    site = make_site(jwt_json_keys=["bearer"])
    body = json.dumps({"csrfToken": "c9", "data": {"bearer": "aaa.bbb.ccc"}})
    assert site.parse_token_response(body, "application/json", []) == {"csrf": "c9", "jwt": "aaa.bbb.ccc"}


def test_parse_token_response_html_and_bad_json():
    site = make_site()
    html = '<meta name="csrf-token" content="h1">'
    assert site.parse_token_response(html, "text/html", [])["csrf"] == "h1"
    assert site.parse_token_response("{oops", "application/json", [{"name": "csrftoken", "value": "k"}]) == {
        "csrf": "k",
        "jwt": None,
    }


def test_sensitive_headers_include_csrf_header_and_secret_headers():
    site = make_site(csrf_header="X-App-Csrf", secret_headers=["X-Api-Key"])
    assert site.sensitive_headers() == ["X-App-Csrf", "X-Api-Key"]
    assert make_site().sensitive_headers() == ["X-CSRFToken"]
