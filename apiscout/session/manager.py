"""
Session Manager - login, XHR discovery and request replay per target site
v1.0 - Initial creation

One browser context per target. Every outbound request goes through the
manager so it carries the session's current headers, cookies and tokens.

Usage:
    async with SessionManager() as manager:
        session = await manager.start(site, Credential.from_env("APISCOUT_SHOP"))
        async for exchange in manager.discover(session, plan):
            print(exchange.method, exchange.url)
        result = await manager.replay(session, RequestSpec(url="https://shop.example/api/items"))
"""

import asyncio
import json
import logging
import time
from contextlib import aclosing
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from apiscout.browser import BrowserSession
from apiscout.config import (
    AUTH_FAILURE_STATUSES,
    DEFAULT_TIMEOUT,
    LOGIN_MAX_ATTEMPTS,
    LOGIN_TIMEOUT,
    NAVIGATION_TIMEOUT,
    REPLAY_MAX_RETRIES,
    RETRY_DELAY,
    TRANSIENT_STATUSES,
)
from apiscout.session.errors import (
    AuthenticationError,
    AuthorizationError,
    NavigationError,
    NetworkError,
    UpstreamStatusError,
)
from apiscout.session.headers import build_session_headers, build_user_agent, header_value, merge_headers
from apiscout.session.interceptor import NetworkInterceptor, decode_body
from apiscout.session.models import (
    CapturedExchange,
    Credential,
    RequestSpec,
    Session,
    parse_cookie_string,
)
from apiscout.session.otp import OtpProvider, provider_for
from apiscout.session.plan import NavigationPlan
from apiscout.session.tokens import jwt_expiry
from apiscout.sites.base_site import LOGIN_OUTCOME_LOGGED_IN, LOGIN_OUTCOME_OTP

logger = logging.getLogger(__name__)


def _body_text(body: Any) -> Optional[str]:
    if body is None or isinstance(body, str):
        return body
    if isinstance(body, bytes):
        return decode_body(body)
    return json.dumps(body, default=str)


class DiscoveryRun:
    """
    Lazy, restartable sequence of exchanges produced by driving a plan.

    Every ``async for`` re-runs the plan from the start on the session's page.
    The session lock is held while a step runs and released while the
    consumer handles the yielded exchanges, so the consumer may call
    ``replay()`` on the same session between batches.
    """

    def __init__(self, manager: "SessionManager", session: Session, plan: NavigationPlan):
        self._manager = manager
        self._session = session
        self._plan = plan
        self.runs = 0

    def __aiter__(self):
        return self._run()

    async def collect(self) -> List[CapturedExchange]:
        return [exchange async for exchange in self]

    async def _run(self):
        session = self._session
        self._manager._ensure_open(session)
        self.runs += 1
        interceptor = NetworkInterceptor(session.page, next_seq=session.next_seq)
        interceptor.start()
        logger.info(f"[{session.name}] Discovery run {self.runs} started ({len(self._plan.all_steps())} steps)")
        total = 0
        try:
            for step in self._plan.all_steps():
                session.last_step = step.describe()
                logger.info(f"[{session.name}] Step: {session.last_step}")
                async with aclosing(step.run(session.page, interceptor)) as batches:
                    while True:
                        async with session.op_lock:
                            try:
                                await batches.__anext__()
                            except StopAsyncIteration:
                                break
                            batch = await interceptor.flush()
                        for exchange in batch:
                            session.record(exchange)
                            total += 1
                            yield exchange

            async with session.op_lock:
                batch = await interceptor.flush()
            for exchange in batch:
                session.record(exchange)
                total += 1
                yield exchange
            logger.info(f"[{session.name}] Discovery run {self.runs} finished: {total} exchanges")

        except asyncio.CancelledError:
            logger.warning(f"[{session.name}] Discovery cancelled during '{session.last_step}'")
            try:
                await session.page.evaluate("() => window.stop()")
            except PlaywrightError as e:
                logger.debug(f"Could not stop page loading: {e}")
            raise
        finally:
            await interceptor.aclose()


class SessionManager:
    """
    Owns browser contexts and mediates every request made on a target's behalf.

    Args:
        browser: BrowserSession to create contexts in (default: launched Chromium)
        otp_provider: Where OTP codes come from when no TOTP seed is configured
        max_retries: Retries for transient network failures
        retry_delay: Base backoff delay in seconds, doubled per attempt
        login_attempts: Login form submissions before AuthenticationError
        login_timeout: Seconds the whole login flow (including OTP wait) may take
    """

    def __init__(
        self,
        browser: Optional[BrowserSession] = None,
        otp_provider: Optional[OtpProvider] = None,
        max_retries: int = REPLAY_MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        login_attempts: int = LOGIN_MAX_ATTEMPTS,
        login_timeout: float = LOGIN_TIMEOUT,
    ):
        self._owns_browser = browser is None
        self.browser = browser or BrowserSession()
        self.otp_provider = otp_provider
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.login_attempts = login_attempts
        self.login_timeout = login_timeout
        self.sessions: Dict[str, Session] = {}
        self._start_locks: Dict[str, asyncio.Lock] = {}

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
        if self._owns_browser:
            await self.browser.close()

    # ------------------------------------------------------------------
    # start / close
    # ------------------------------------------------------------------

    async def start(self, target, credential: Optional[Credential] = None) -> Session:
        """
        Open a browser context for *target*, log in and derive initial tokens.

        Returns the already-open Session if *target* was started before.

        Raises:
            AuthenticationError: cookie rejected, login or OTP failed, or timed out
            NavigationError: the site's base URL could not be loaded
        """
        async with self._start_locks.setdefault(target.SITE_NAME, asyncio.Lock()):
            existing = self.sessions.get(target.SITE_NAME)
            if existing is not None and not existing.closed:
                logger.info(f"[{target.SITE_NAME}] Reusing open session")
                return existing
            return await self._open_session(target, credential)

    async def _open_session(self, target, credential: Optional[Credential]) -> Session:
        await self.browser.connect()
        user_agent = target.USER_AGENT or build_user_agent()
        context = await self.browser.new_context(user_agent=user_agent)
        try:
            page = await context.new_page()
            session = Session(target, context, page, credential, user_agent)
            await self._authenticate(session)
            tokens = await target.extract_tokens(page, await context.cookies())
            await self._apply_tokens(session, tokens)
        except BaseException:
            await self.browser.release_context(context)
            raise

        self.sessions[target.SITE_NAME] = session
        logger.info(f"[{target.SITE_NAME}] Session started: {session}")
        return session

    async def close(self, session: Session) -> None:
        if session.closed:
            return
        session.closed = True
        if self.sessions.get(session.name) is session:
            del self.sessions[session.name]
        await self.browser.release_context(session.context)
        logger.info(f"[{session.name}] Session closed ({len(session.exchanges)} exchanges recorded)")

    async def close_all(self) -> None:
        for session in list(self.sessions.values()):
            await self.close(session)

    def _ensure_open(self, session: Session) -> None:
        if session.closed:
            raise RuntimeError(f"Session for {session.name} is closed")

    # ------------------------------------------------------------------
    # authentication
    # ------------------------------------------------------------------

    async def _goto(self, session: Session, page, url: str) -> None:
        try:
            await page.goto(url, wait_until='domcontentloaded', timeout=NAVIGATION_TIMEOUT)
        except PlaywrightTimeoutError:
            raise NavigationError(f"Could not load {url}", url=url, last_step=f"open {url}")

    async def _authenticate(self, session: Session) -> None:
        site = session.target
        credential = session.credential
        page = session.page

        if credential is not None and credential.cookie:
            await session.context.add_cookies(parse_cookie_string(credential.cookie, site.BASE_URL))
            await self._goto(session, page, site.BASE_URL)
            if await site.is_logged_in(page):
                logger.info(f"[{site.SITE_NAME}] Cookie credential accepted")
                return
            if not credential.has_login:
                raise AuthenticationError(
                    f"Cookie credential for {site.SITE_NAME} was rejected",
                    url=page.url,
                    last_step="cookie login",
                )
            logger.warning(f"[{site.SITE_NAME}] Cookie credential rejected, falling back to form login")

        if credential is not None and credential.has_login:
            await self._login(session, page)
            return

        await self._goto(session, page, site.BASE_URL)
        if not await site.is_logged_in(page):
            logger.warning(f"[{site.SITE_NAME}] No credential supplied and not logged in; session is anonymous")

    async def _login(self, session: Session, page) -> None:
        """
        Run the login form flow on *page*, bounded by attempts and wall time.

        Raises:
            AuthenticationError: every attempt failed or the flow timed out
        """
        site = session.target
        provider = provider_for(session.credential, self.otp_provider)
        try:
            await asyncio.wait_for(self._login_attempts(session, page, provider), timeout=self.login_timeout)
        except asyncio.TimeoutError:
            raise AuthenticationError(
                f"Login to {site.SITE_NAME} did not complete within {self.login_timeout}s",
                url=page.url,
                last_step="login",
            )

    async def _login_attempts(self, session: Session, page, provider: Optional[OtpProvider]) -> None:
        site = session.target
        credential = session.credential
        reason = ""

        for attempt in range(1, self.login_attempts + 1):
            try:
                await site.submit_login(page, credential.username, credential.password)
            except PlaywrightError as e:
                reason = f"login form unavailable: {e}"
                logger.warning(f"[{site.SITE_NAME}] Login attempt {attempt}/{self.login_attempts} failed: {reason}")
                continue

            outcome = await site.wait_for_login_outcome(page)
            if outcome == LOGIN_OUTCOME_LOGGED_IN:
                logger.info(f"[{site.SITE_NAME}] Logged in (attempt {attempt})")
                return

            if outcome == LOGIN_OUTCOME_OTP:
                if provider is None:
                    raise AuthenticationError(
                        f"{site.SITE_NAME} asked for an OTP code but no OTP provider is configured",
                        url=page.url,
                        last_step="otp",
                    )
                logger.info(f"[{site.SITE_NAME}] OTP prompt shown, waiting for code")
                code = await provider.get_code(site.SITE_NAME)
                await site.submit_otp(page, code)
                if await site.wait_for_logged_in(page):
                    logger.info(f"[{site.SITE_NAME}] Logged in with OTP (attempt {attempt})")
                    return
                reason = "OTP code rejected"
            else:
                reason = "credentials rejected"

            logger.warning(f"[{site.SITE_NAME}] Login attempt {attempt}/{self.login_attempts} failed: {reason}")

        raise AuthenticationError(
            f"Login to {site.SITE_NAME} failed after {self.login_attempts} attempts: {reason}",
            url=page.url,
            last_step="login",
        )

    # ------------------------------------------------------------------
    # token refresh
    # ------------------------------------------------------------------

    async def refresh_token(self, session: Session, seen_generation: Optional[int] = None) -> Session:
        """
        Re-derive the session's CSRF token / JWT.

        Concurrent callers share one refresh: whoever finds the generation
        already advanced past the one it saw returns without refreshing.

        Args:
            session: Session to refresh
            seen_generation: Generation the caller's stale token came from

        Raises:
            AuthenticationError: tokens could not be re-derived, even by logging in again
        """
        self._ensure_open(session)
        if seen_generation is None:
            seen_generation = session.auth.generation

        async with session.refresh_lock:
            if session.auth.generation != seen_generation:
                logger.info(
                    f"[{session.name}] Tokens already refreshed "
                    f"(generation {seen_generation} -> {session.auth.generation})"
                )
                return session
            await self._refresh(session)
        return session

    async def _refresh(self, session: Session) -> None:
        site = session.target
        logger.info(f"[{session.name}] Refreshing tokens (generation {session.auth.generation})")
        tokens = await self._fetch_tokens(session)

        if tokens is None:
            credential = session.credential
            if credential is None or not credential.has_login:
                raise AuthenticationError(
                    f"Tokens for {site.SITE_NAME} expired and no login credential is available",
                    last_step="refresh",
                )
            logger.info(f"[{session.name}] Token page rejected the session, logging in again")
            page = await session.context.new_page()
            try:
                await self._login(session, page)
                tokens = await site.extract_tokens(page, await session.context.cookies())
            finally:
                await page.close()

        session.refresh_count += 1
        await self._apply_tokens(session, tokens)
        logger.info(f"[{session.name}] Tokens refreshed (generation {session.auth.generation})")

    async def _fetch_tokens(self, session: Session) -> Optional[Dict[str, Optional[str]]]:
        """
        Re-fetch the token source without touching the discovery page.

        Returns:
            {"csrf", "jwt"} or None if the site no longer considers us logged in
        """
        site = session.target
        if not site.TOKEN_PAGE_URL:
            return await self._read_page_tokens(session)

        tokens = await self._fetch_token_page(session)
        if tokens is None or tokens.get("jwt") or not site.JWT_STORAGE_KEY:
            return tokens

        # The JWT lives in localStorage, which only a rendered page can read
        page_tokens = await self._read_page_tokens(session)
        if page_tokens is None:
            return None
        return {"csrf": tokens.get("csrf") or page_tokens.get("csrf"), "jwt": page_tokens.get("jwt")}

    async def _fetch_token_page(self, session: Session) -> Optional[Dict[str, Optional[str]]]:
        site = session.target
        headers = {"User-Agent": session.user_agent, "Referer": site.BASE_URL}
        try:
            response = await session.context.request.get(
                site.TOKEN_PAGE_URL,
                headers=headers,
                timeout=DEFAULT_TIMEOUT,
                fail_on_status_code=False,
            )
            text = await response.text()
        except PlaywrightError as e:
            logger.warning(f"[{session.name}] Token page request failed: {e}")
            return None
        if response.status in AUTH_FAILURE_STATUSES or site.on_login_page(response.url):
            return None
        if not 200 <= response.status < 300:
            logger.warning(f"[{session.name}] Token page answered {response.status}")
            return None
        content_type = header_value(response.headers, "content-type") or ""
        return site.parse_token_response(text, content_type, await session.context.cookies())

    async def _read_page_tokens(self, session: Session) -> Optional[Dict[str, Optional[str]]]:
        """Load the site on a fresh page of the same context and read its tokens."""
        site = session.target
        page = await session.context.new_page()
        try:
            await self._goto(session, page, site.BASE_URL)
            if not await site.is_logged_in(page):
                return None
            return await site.extract_tokens(page, await session.context.cookies())
        finally:
            await page.close()

    async def _apply_tokens(self, session: Session, tokens: Dict[str, Optional[str]]) -> None:
        auth = session.auth
        auth.cookies = await session.context.cookies()
        auth.csrf_token = tokens.get("csrf") or None
        auth.jwt = tokens.get("jwt") or None
        auth.expires_at = jwt_expiry(auth.jwt)
        auth.generation += 1
        auth.refreshed_at = time.time()
        logger.debug(
            f"[{session.name}] Auth state: csrf={'yes' if auth.csrf_token else 'no'}, "
            f"jwt={'yes' if auth.jwt else 'no'}, cookies={len(auth.cookies)}"
        )

    # ------------------------------------------------------------------
    # discovery / replay
    # ------------------------------------------------------------------

    def discover(self, session: Session, plan: NavigationPlan) -> DiscoveryRun:
        self._ensure_open(session)
        return DiscoveryRun(self, session, plan)

    async def replay(self, session: Session, spec: RequestSpec) -> CapturedExchange:
        """
        Issue one request with the session's headers merged with the caller overrides.

        A 401/403 triggers one token refresh and one retry.

        Raises:
            AuthorizationError: still 401/403 after the refresh
            UpstreamStatusError: any other non-2xx response
            UpstreamFormatError: expect="json" and the body does not parse
            NetworkError: transient failures outlasted the retries
        """
        self._ensure_open(session)
        if session.auth.is_expired():
            logger.info(f"[{session.name}] Token expired, refreshing before replay")
            await self.refresh_token(session)

        generation = session.auth.generation
        exchange = await self._send_with_retry(session, spec)

        if exchange.status in AUTH_FAILURE_STATUSES:
            logger.warning(f"[{session.name}] {exchange.status} from {spec.method} {spec.url}, refreshing tokens")
            await self.refresh_token(session, seen_generation=generation)
            exchange = await self._send_with_retry(session, spec)
            if exchange.status in AUTH_FAILURE_STATUSES:
                raise AuthorizationError(
                    f"{spec.method} {spec.url} still rejected after token refresh",
                    status=exchange.status,
                    raw_body=exchange.response_body,
                    url=exchange.url,
                )

        if not exchange.ok:
            raise UpstreamStatusError(
                f"{spec.method} {spec.url} failed",
                status=exchange.status,
                raw_body=exchange.response_body,
                url=exchange.url,
            )

        if spec.expect == "json":
            exchange.json()
        return exchange

    async def _send_with_retry(self, session: Session, spec: RequestSpec) -> CapturedExchange:
        attempt = 0
        while True:
            attempt += 1
            try:
                exchange = await self._send(session, spec)
            except PlaywrightError as e:
                if attempt > self.max_retries:
                    raise NetworkError(
                        f"{spec.method} {spec.url} failed after {attempt} attempts: {e}",
                        url=spec.url,
                    )
                logger.warning(f"[{session.name}] Request error on attempt {attempt}: {e}")
            else:
                if exchange.status not in TRANSIENT_STATUSES or attempt > self.max_retries:
                    return exchange
                logger.warning(f"[{session.name}] Transient {exchange.status} on attempt {attempt}")

            delay = self.retry_delay * 2 ** (attempt - 1)
            logger.info(f"[{session.name}] Retrying in {delay:.1f}s")
            await asyncio.sleep(delay)

    def _request_headers(self, session: Session, spec: RequestSpec) -> Dict[str, str]:
        headers = build_session_headers(session.target, session.auth, session.user_agent)
        if spec.json_body is not None:
            headers["Content-Type"] = "application/json"
        return merge_headers(headers, spec.headers)

    async def _send(self, session: Session, spec: RequestSpec) -> CapturedExchange:
        headers = self._request_headers(session, spec)
        body: Any = spec.data
        if spec.json_body is not None:
            body = json.dumps(spec.json_body)

        options: Dict[str, Any] = {
            "method": spec.method,
            "headers": headers,
            "timeout": spec.timeout or DEFAULT_TIMEOUT,
            "fail_on_status_code": False,
        }
        if spec.params:
            options["params"] = spec.params
        if body is not None:
            options["data"] = body

        async with session.op_lock:
            observed_at = time.time()
            response = await session.context.request.fetch(spec.url, **options)
            try:
                raw = await response.body()
            finally:
                await response.dispose()
            cookies = await session.context.cookies(spec.url)

        # The Cookie header is added by the context jar; record what was sent
        sent_headers = dict(headers)
        cookie_header = "; ".join(f"{c['name']}={c['value']}" for c in cookies)
        if cookie_header:
            sent_headers["Cookie"] = cookie_header

        exchange = CapturedExchange(
            method=spec.method,
            url=response.url or spec.url,
            request_headers=sent_headers,
            request_body=_body_text(body),
            status=response.status,
            response_headers=dict(response.headers or {}),
            response_body=decode_body(raw, limit=0),
            timestamp=observed_at,
            resource_type="replay",
            seq=session.next_seq(),
        )
        session.record(exchange)
        logger.info(f"[{session.name}] Replay {spec.method} {spec.url} -> {exchange.status}")
        return exchange
