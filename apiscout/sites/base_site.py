# Base Site - Abstract base class for all target sites
# v2.0 - Reworked for API discovery sessions
#   - Sites no longer hold a page; every method takes the page to act on
#   - Added login form / OTP handling and token extraction hooks
#
# Provides common functionality for:
# - Login form submission and OTP prompt detection
# - Logged-in detection
# - CSRF / JWT extraction from pages, cookies and token endpoints
# - Popup dismissal

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from apiscout.config import DEFAULT_TIMEOUT, NAVIGATION_TIMEOUT
from apiscout.session.tokens import (
    csrf_from_cookies,
    csrf_from_html,
    jwt_from_json,
    looks_like_jwt,
)

logger = logging.getLogger(__name__)

LOGIN_OUTCOME_LOGGED_IN = "logged_in"
LOGIN_OUTCOME_OTP = "otp"
LOGIN_OUTCOME_FAILED = "failed"


class BaseSite(ABC):
    """
    Abstract base class for target sites.

    Each site implementation describes:
    1. Where and how to log in (form selectors, OTP prompt)
    2. How to tell that the browser is logged in
    3. Where the CSRF token / JWT lives
    4. Which application-specific headers its own XHR calls send
    """

    # Subclasses should override these
    SITE_NAME: str = "BaseSite"
    BASE_URL: str = ""
    LOGIN_URL: str = ""
    LOGIN_URL_MARKER: str = ""          # substring of the URL while on the login page

    USERNAME_SELECTOR: str = 'input[name="username"], input[type="email"]'
    PASSWORD_SELECTOR: str = 'input[type="password"]'
    SUBMIT_SELECTOR: str = 'button[type="submit"]'
    OTP_SELECTOR: str = ""              # empty = site never asks for a second factor
    OTP_SUBMIT_SELECTOR: str = ""       # empty = press Enter in the OTP field
    LOGGED_IN_SELECTOR: str = ""

    TOKEN_PAGE_URL: str = ""            # page re-fetched to re-derive the CSRF token / JWT
    CSRF_HEADER: str = "X-CSRFToken"
    CSRF_COOKIE_NAME: str = ""
    CSRF_NAMES: List[str] = []          # extra meta/input names to look for
    JWT_STORAGE_KEY: str = ""           # localStorage key holding the JWT
    JWT_JSON_KEYS: List[str] = []
    APP_HEADERS: Dict[str, str] = {}
    SECRET_HEADERS: List[str] = []      # app headers that carry credentials
    USER_AGENT: str = ""

    @abstractmethod
    async def is_logged_in(self, page: Page) -> bool:
        """
        Check if the browser is logged in to this site.

        Args:
            page: Page to inspect

        Returns:
            bool: True if logged in, False otherwise
        """
        pass

    def sensitive_headers(self) -> List[str]:
        """Header names whose values must never be persisted for this site."""
        names = [self.CSRF_HEADER] + list(self.SECRET_HEADERS)
        return [name for name in names if name]

    def on_login_page(self, url: str) -> bool:
        marker = self.LOGIN_URL_MARKER or self.LOGIN_URL
        return bool(marker) and marker in (url or "")

    async def submit_login(self, page: Page, username: str, password: str) -> None:
        """
        Open the login page, fill the form and submit it.

        Args:
            page: Page used for the login flow
            username: Account name
            password: Account password
        """
        logger.info(f"Opening login page: {self.LOGIN_URL}")
        await page.goto(self.LOGIN_URL, wait_until='domcontentloaded', timeout=NAVIGATION_TIMEOUT)
        await page.wait_for_selector(self.USERNAME_SELECTOR, timeout=DEFAULT_TIMEOUT)
        await page.fill(self.USERNAME_SELECTOR, username)
        await page.fill(self.PASSWORD_SELECTOR, password)
        await page.click(self.SUBMIT_SELECTOR)
        logger.info(f"Submitted login form for {self.SITE_NAME}")

    async def wait_for_login_outcome(self, page: Page, timeout: int = DEFAULT_TIMEOUT) -> str:
        """
        Wait until the page shows either the logged-in marker or the OTP prompt.

        Returns:
            One of "logged_in", "otp", "failed"
        """
        selectors = [s for s in (self.LOGGED_IN_SELECTOR, self.OTP_SELECTOR) if s]
        if not selectors:
            await asyncio.sleep(1)
            return LOGIN_OUTCOME_FAILED if self.on_login_page(page.url) else LOGIN_OUTCOME_LOGGED_IN

        try:
            await page.wait_for_selector(", ".join(selectors), timeout=timeout, state='visible')
        except PlaywrightTimeoutError:
            logger.warning(f"Neither logged-in marker nor OTP prompt appeared on {page.url}")
            return LOGIN_OUTCOME_FAILED

        if self.OTP_SELECTOR and await page.is_visible(self.OTP_SELECTOR):
            return LOGIN_OUTCOME_OTP
        return LOGIN_OUTCOME_LOGGED_IN

    async def wait_for_logged_in(self, page: Page, timeout: int = DEFAULT_TIMEOUT) -> bool:
        """Wait for the logged-in marker after the OTP code was submitted."""
        if not self.LOGGED_IN_SELECTOR:
            await asyncio.sleep(1)
            return await self.is_logged_in(page)
        try:
            await page.wait_for_selector(self.LOGGED_IN_SELECTOR, timeout=timeout, state='visible')
        except PlaywrightTimeoutError:
            return False
        return not self.on_login_page(page.url)

    async def submit_otp(self, page: Page, code: str) -> None:
        await page.fill(self.OTP_SELECTOR, code)
        if self.OTP_SUBMIT_SELECTOR:
            await page.click(self.OTP_SUBMIT_SELECTOR)
        else:
            await page.press(self.OTP_SELECTOR, "Enter")
        logger.info(f"Submitted OTP code for {self.SITE_NAME}")

    async def extract_tokens(self, page: Page, cookies: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
        """
        Read the CSRF token and JWT from a loaded page.

        Args:
            page: Page showing an authenticated view of the site
            cookies: Current cookies of the context

        Returns:
            {"csrf": ..., "jwt": ...}; missing values are None
        """
        csrf = None
        try:
            html = await page.content()
            csrf = csrf_from_html(html, self.CSRF_NAMES)
        except Exception as e:
            logger.warning(f"Could not read page content for CSRF token: {e}")
        if not csrf:
            csrf = csrf_from_cookies(cookies, [self.CSRF_COOKIE_NAME])

        jwt = None
        if self.JWT_STORAGE_KEY:
            try:
                stored = await page.evaluate(
                    "key => window.localStorage.getItem(key)", self.JWT_STORAGE_KEY
                )
                if looks_like_jwt(stored):
                    jwt = stored
            except Exception as e:
                logger.warning(f"Could not read {self.JWT_STORAGE_KEY} from localStorage: {e}")

        return {"csrf": csrf, "jwt": jwt}

    def parse_token_response(self, text: str, content_type: str,
                             cookies: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
        """
        Read the CSRF token and JWT from a re-fetched token page (HTML or JSON).
        """
        csrf = None
        jwt = None
        if "json" in (content_type or "").lower():
            try:
                body = json.loads(text)
            except ValueError:
                body = None
            if isinstance(body, dict):
                jwt = jwt_from_json(body, self.JWT_JSON_KEYS)
                for key in list(self.CSRF_NAMES) + ["csrfToken", "csrf_token", "csrf"]:
                    if isinstance(body.get(key), str):
                        csrf = body[key]
                        break
        else:
            csrf = csrf_from_html(text, self.CSRF_NAMES)
        if not csrf:
            csrf = csrf_from_cookies(cookies, [self.CSRF_COOKIE_NAME])
        return {"csrf": csrf, "jwt": jwt}

    async def dismiss_popups(self, page: Page) -> None:
        """
        Dismiss cookie banners and promotional popups.
        Common across most sites.
        """
        dismiss_texts = [
            "Accept all",
            "Accept",
            "Got it",
            "Close",
            "No thanks",
            "×"
        ]

        for text in dismiss_texts:
            try:
                button = await page.query_selector(f'button:has-text("{text}")')
                if button and await button.is_visible():
                    await button.click()
                    logger.info(f"Dismissed popup: {text}")
                    await asyncio.sleep(0.5)
            except Exception as e:
                logger.debug(f"Popup button '{text}' not clickable: {e}")

    def __repr__(self) -> str:
        return f"{self.SITE_NAME}(url={self.BASE_URL})"
