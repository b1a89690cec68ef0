"""
Browser Session - owns the Playwright driver and hands out isolated contexts
v2.0 - Replaces CDPSession
  - Launches headless Chromium by default, attaches over CDP when a URL is given
  - One BrowserContext per target session; contexts never share cookies
"""

import logging
from typing import Dict, List, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright

from apiscout.browser.cdp_launcher import ensure_cdp_available, port_from_cdp_url
from apiscout.config import CDP_URL, DEFAULT_TIMEOUT, HEADLESS, LOCALE, PROFILE_DIR

logger = logging.getLogger(__name__)


class BrowserSession:
    """
    Manages the browser process that target sessions run in.

    Args:
        cdp_url: Attach to a Chrome at this CDP endpoint instead of launching
        headless: Headless mode for launched Chromium
        launch_chrome: Start a local Chrome with CDP if *cdp_url* is not answering
    """

    def __init__(self, cdp_url: str = CDP_URL, headless: bool = HEADLESS,
                 launch_chrome: bool = False):
        self.cdp_url = cdp_url
        self.headless = headless
        self.launch_chrome = launch_chrome
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.contexts: List[BrowserContext] = []

    @property
    def connected(self) -> bool:
        return self.browser is not None

    async def connect(self) -> Browser:
        """
        Start Playwright and launch or attach to a browser.

        Raises:
            RuntimeError: If the browser cannot be reached
        """
        if self.browser:
            return self.browser

        self.playwright = await async_playwright().start()
        try:
            if self.cdp_url:
                if self.launch_chrome:
                    ok, _ = await ensure_cdp_available(port_from_cdp_url(self.cdp_url), PROFILE_DIR)
                    if not ok:
                        raise RuntimeError(f"Chrome CDP not available at {self.cdp_url}")
                logger.info(f"Connecting to Chrome via CDP: {self.cdp_url}")
                self.browser = await self.playwright.chromium.connect_over_cdp(self.cdp_url)
            else:
                logger.info(f"Launching Chromium (headless={self.headless})")
                self.browser = await self.playwright.chromium.launch(headless=self.headless)
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.playwright.stop()
            self.playwright = None
            raise RuntimeError(f"Browser connection failed: {e}")

        return self.browser

    async def new_context(self, user_agent: str = "", locale: str = LOCALE,
                          extra_http_headers: Optional[Dict[str, str]] = None) -> BrowserContext:
        """
        Create an isolated context for one target.

        Raises:
            RuntimeError: If not connected
        """
        if not self.browser:
            raise RuntimeError("Not connected. Call connect() first.")
        options = {"locale": locale}
        if user_agent:
            options["user_agent"] = user_agent
        if extra_http_headers:
            options["extra_http_headers"] = extra_http_headers
        context = await self.browser.new_context(**options)
        context.set_default_timeout(DEFAULT_TIMEOUT)
        self.contexts.append(context)
        logger.info(f"Created browser context ({len(self.contexts)} open)")
        return context

    async def release_context(self, context: BrowserContext) -> None:
        if context in self.contexts:
            self.contexts.remove(context)
        try:
            await context.close()
        except Exception as e:
            logger.warning(f"Error closing browser context: {e}")

    async def close(self) -> None:
        """
        Close every context and the browser connection.

        A CDP-attached Chrome keeps running; only our contexts are closed.
        """
        for context in list(self.contexts):
            await self.release_context(context)

        if self.browser:
            try:
                await self.browser.close()
            except Exception as e:
                logger.error(f"Error closing browser: {e}")
            self.browser = None
            logger.info("Closed browser connection")

        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
            logger.info("Stopped Playwright")

    def __repr__(self) -> str:
        mode = f"cdp={self.cdp_url}" if self.cdp_url else f"headless={self.headless}"
        status = "connected" if self.browser else "disconnected"
        return f"BrowserSession({mode}, status={status}, contexts={len(self.contexts)})"
