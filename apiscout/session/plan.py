"""
Navigation plans - the browser actions that make a site fire its API calls
v1.0 - Initial creation

A plan is an optional start URL plus ordered steps. Each step is an async
generator that yields every time the network has settled after an action
(one scroll batch, one click), so discovery can hand out exchanges lazily.

Plan JSON:
    {
        "start_url": "https://example.com/feed",
        "steps": [
            {"action": "click", "selector": "button.load-more", "required": false},
            {"action": "scroll", "max_scrolls": 20},
            {"action": "wait_idle", "idle_ms": 2000}
        ]
    }
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from apiscout.config import DEFAULT_TIMEOUT, MAX_SCROLLS, NAVIGATION_TIMEOUT, NETWORK_IDLE_MS
from apiscout.session.errors import NavigationError

logger = logging.getLogger(__name__)

SCROLL_HEIGHT_JS = "() => document.body ? document.body.scrollHeight : 0"
SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body ? document.body.scrollHeight : 0)"


async def wait_for_network_quiet(
    page,
    interceptor,
    idle_ms: int = NETWORK_IDLE_MS,
    timeout_ms: int = DEFAULT_TIMEOUT,
    poll_ms: int = 100,
) -> bool:
    """
    Wait until no new exchange has been observed for *idle_ms*.

    Uses page.wait_for_timeout() so Playwright keeps dispatching response
    events while we poll.

    Returns:
        bool: True if the network went quiet before *timeout_ms*
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    last_count = interceptor.captured_count
    quiet_since = loop.time()

    while loop.time() < deadline:
        await page.wait_for_timeout(min(poll_ms, idle_ms))
        count = interceptor.captured_count
        if count != last_count or interceptor.pending:
            last_count = count
            quiet_since = loop.time()
            continue
        if (loop.time() - quiet_since) * 1000 >= idle_ms:
            return True

    logger.warning(f"Network did not go quiet within {timeout_ms}ms")
    return False


@dataclass
class GotoStep:
    url: str
    wait_until: str = "domcontentloaded"
    idle_ms: int = NETWORK_IDLE_MS

    def describe(self) -> str:
        return f"goto {self.url}"

    async def run(self, page, interceptor) -> AsyncIterator[None]:
        try:
            await page.goto(self.url, wait_until=self.wait_until, timeout=NAVIGATION_TIMEOUT)
        except PlaywrightTimeoutError:
            raise NavigationError(
                f"Navigation to {self.url} timed out", url=self.url, last_step=self.describe()
            )
        await wait_for_network_quiet(page, interceptor, self.idle_ms)
        yield


@dataclass
class ScrollStep:
    """Scroll to the bottom until neither page height nor traffic changes."""

    max_scrolls: int = MAX_SCROLLS
    idle_ms: int = NETWORK_IDLE_MS
    timeout_ms: int = DEFAULT_TIMEOUT

    def describe(self) -> str:
        return f"scroll (max {self.max_scrolls})"

    async def run(self, page, interceptor) -> AsyncIterator[None]:
        for i in range(self.max_scrolls):
            count_before = interceptor.captured_count
            height_before = await page.evaluate(SCROLL_HEIGHT_JS)
            await page.evaluate(SCROLL_TO_BOTTOM_JS)
            await wait_for_network_quiet(page, interceptor, self.idle_ms, self.timeout_ms)
            height_after = await page.evaluate(SCROLL_HEIGHT_JS)
            new_exchanges = interceptor.captured_count - count_before

            if new_exchanges == 0 and height_after == height_before:
                logger.info(f"Reached end of scroll after {i} batches")
                return
            logger.info(f"Scroll batch {i + 1}: {new_exchanges} new exchanges, height {height_after}")
            yield
        logger.info(f"Stopped scrolling at max_scrolls={self.max_scrolls}")


@dataclass
class ClickStep:
    """Click the first (or every) element matching *selector*."""

    selector: str
    required: bool = True
    all_matches: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT
    idle_ms: int = NETWORK_IDLE_MS

    def describe(self) -> str:
        return f"click {self.selector}"

    async def run(self, page, interceptor) -> AsyncIterator[None]:
        try:
            await page.wait_for_selector(self.selector, timeout=self.timeout_ms, state='visible')
        except PlaywrightTimeoutError:
            if self.required:
                raise NavigationError(
                    f"No element matched '{self.selector}' within {self.timeout_ms}ms",
                    url=page.url,
                    last_step=self.describe(),
                )
            logger.warning(f"Optional click target '{self.selector}' not found, skipping")
            return

        if self.all_matches:
            elements = await page.query_selector_all(self.selector)
        else:
            elements = [await page.query_selector(self.selector)]

        for element in elements:
            if element is None:
                continue
            await element.click()
            await wait_for_network_quiet(page, interceptor, self.idle_ms, self.timeout_ms)
            yield


@dataclass
class WaitIdleStep:
    idle_ms: int = NETWORK_IDLE_MS
    timeout_ms: int = DEFAULT_TIMEOUT

    def describe(self) -> str:
        return f"wait_idle {self.idle_ms}ms"

    async def run(self, page, interceptor) -> AsyncIterator[None]:
        await wait_for_network_quiet(page, interceptor, self.idle_ms, self.timeout_ms)
        yield


STEP_TYPES = {
    "goto": GotoStep,
    "scroll": ScrollStep,
    "click": ClickStep,
    "wait_idle": WaitIdleStep,
}


@dataclass
class NavigationPlan:
    steps: List[Any] = field(default_factory=list)
    start_url: Optional[str] = None

    def all_steps(self) -> List[Any]:
        if self.start_url:
            return [GotoStep(self.start_url)] + list(self.steps)
        return list(self.steps)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationPlan":
        """
        Build a plan from its JSON form.

        Raises:
            ValueError: unknown action or bad step arguments
        """
        steps = []
        for raw in data.get("steps", []):
            raw = dict(raw)
            action = raw.pop("action", None)
            if action not in STEP_TYPES:
                raise ValueError(f"Unknown plan action: {action}. Available: {list(STEP_TYPES)}")
            try:
                steps.append(STEP_TYPES[action](**raw))
            except TypeError as e:
                raise ValueError(f"Bad arguments for '{action}' step: {e}")
        return cls(steps=steps, start_url=data.get("start_url"))


def load_plan(path: str) -> NavigationPlan:
    with open(Path(path), "r", encoding="utf-8") as f:
        return NavigationPlan.from_dict(json.load(f))
