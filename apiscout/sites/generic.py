# Generic Site - Target site described by a profile dict / JSON file
# v1.0 - Initial creation
#
# Profile keys (all optional except name/base_url):
#   name, base_url, login_url, login_url_marker,
#   username_selector, password_selector, submit_selector,
#   otp_selector, otp_submit_selector, logged_in_selector,
#   token_page_url, csrf_header, csrf_cookie_name, csrf_names,
#   jwt_storage_key, jwt_json_keys, app_headers, secret_headers, user_agent

import json
import logging
from pathlib import Path
from typing import Any, Dict

from playwright.async_api import Page

from apiscout.sites.base_site import BaseSite

logger = logging.getLogger(__name__)

# profile key -> class attribute
PROFILE_FIELDS = {
    "name": "SITE_NAME",
    "base_url": "BASE_URL",
    "login_url": "LOGIN_URL",
    "login_url_marker": "LOGIN_URL_MARKER",
    "username_selector": "USERNAME_SELECTOR",
    "password_selector": "PASSWORD_SELECTOR",
    "submit_selector": "SUBMIT_SELECTOR",
    "otp_selector": "OTP_SELECTOR",
    "otp_submit_selector": "OTP_SUBMIT_SELECTOR",
    "logged_in_selector": "LOGGED_IN_SELECTOR",
    "token_page_url": "TOKEN_PAGE_URL",
    "csrf_header": "CSRF_HEADER",
    "csrf_cookie_name": "CSRF_COOKIE_NAME",
    "csrf_names": "CSRF_NAMES",
    "jwt_storage_key": "JWT_STORAGE_KEY",
    "jwt_json_keys": "JWT_JSON_KEYS",
    "app_headers": "APP_HEADERS",
    "secret_headers": "SECRET_HEADERS",
    "user_agent": "USER_AGENT",
}


class GenericSite(BaseSite):
    """
    Site whose selectors and token sources come from a profile.

    Login detection: not on the login page, and the logged-in marker (if
    configured) is visible.
    """

    def __init__(self, **attrs: Any):
        for attr, value in attrs.items():
            setattr(self, attr, value)
        # Per-instance copies so profiles never share mutable class defaults
        self.CSRF_NAMES = list(self.CSRF_NAMES)
        self.JWT_JSON_KEYS = list(self.JWT_JSON_KEYS)
        self.APP_HEADERS = dict(self.APP_HEADERS)
        self.SECRET_HEADERS = list(self.SECRET_HEADERS)

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "GenericSite":
        """
        Build a site from a profile dict.

        Raises:
            ValueError: missing name/base_url or unknown keys
        """
        unknown = set(profile) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown site profile keys: {sorted(unknown)}")
        if not profile.get("name") or not profile.get("base_url"):
            raise ValueError("Site profile needs at least 'name' and 'base_url'")
        attrs = {PROFILE_FIELDS[key]: value for key, value in profile.items()}
        return cls(**attrs)

    async def is_logged_in(self, page: Page) -> bool:
        if self.on_login_page(page.url):
            return False
        if not self.LOGGED_IN_SELECTOR:
            return True
        try:
            return await page.is_visible(self.LOGGED_IN_SELECTOR)
        except Exception as e:
            logger.warning(f"Login check failed: {e}")
            return False


def load_profile(path: str) -> GenericSite:
    """
    Load a site profile from a JSON file.

    Args:
        path: Path to the profile JSON

    Returns:
        GenericSite configured from the file
    """
    with open(Path(path), "r", encoding="utf-8") as f:
        profile = json.load(f)
    site = GenericSite.from_profile(profile)
    logger.info(f"Loaded site profile {site.SITE_NAME} from {path}")
    return site
