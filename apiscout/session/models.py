"""
Session data model
v1.0 - Initial creation

- CapturedExchange: immutable request/response record
- Credential: environment-sourced secrets, memory only
- AuthState: mutable authentication state, changed only by the refresh path
- RequestSpec: one outbound request for replay
- Session: browser context + auth state + exchange log for one target
"""

import asyncio
import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from apiscout.config import EXCHANGE_LOG_LIMIT
from apiscout.session.errors import UpstreamFormatError


@dataclass(frozen=True)
class CapturedExchange:
    """One observed or replayed HTTP exchange. Never mutated after creation."""

    method: str
    url: str
    request_headers: Mapping[str, str]
    request_body: Optional[str]
    status: int
    response_headers: Mapping[str, str]
    response_body: str
    timestamp: float
    resource_type: str = "fetch"
    seq: int = 0
    body_truncated: bool = False  # captured body longer than the capture limit

    def __post_init__(self):
        object.__setattr__(self, "request_headers", MappingProxyType(dict(self.request_headers)))
        object.__setattr__(self, "response_headers", MappingProxyType(dict(self.response_headers)))

    @property
    def content_type(self) -> str:
        for key, value in self.response_headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    @property
    def path(self) -> str:
        return urlparse(self.url).path or "/"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """
        Parse the response body as JSON.

        Raises:
            UpstreamFormatError: body is not JSON; the literal body is attached
        """
        try:
            return json.loads(self.response_body)
        except (TypeError, ValueError) as e:
            note = " (body was truncated at capture)" if self.body_truncated else ""
            raise UpstreamFormatError(
                f"Expected JSON from {self.method} {self.url}, got {self.content_type or 'unknown content type'}: {e}{note}",
                status=self.status,
                raw_body=self.response_body,
                url=self.url,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "method": self.method,
            "url": self.url,
            "request_headers": dict(self.request_headers),
            "request_body": self.request_body,
            "status": self.status,
            "response_headers": dict(self.response_headers),
            "response_body": self.response_body,
            "body_truncated": self.body_truncated,
            "resource_type": self.resource_type,
            "timestamp": self.timestamp,
            "observed_at": datetime.fromtimestamp(self.timestamp).isoformat(),
        }


def parse_cookie_string(cookie_string: str, url: str) -> List[Dict[str, str]]:
    """
    Convert a raw ``Cookie:`` header value into Playwright cookie dicts.

    Args:
        cookie_string: "name=value; other=value2"
        url: URL the cookies belong to

    Returns:
        List of {"name", "value", "url"} dicts for context.add_cookies()
    """
    cookies = []
    for part in cookie_string.split(";"):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        if not name:
            continue
        cookies.append({"name": name, "value": value.strip(), "url": url})
    return cookies


@dataclass
class Credential:
    """
    Externally supplied secret for one target.

    Held in process memory for the Session's lifetime only; the persistence
    layer never receives it.
    """

    cookie: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    totp_seed: Optional[str] = None

    @classmethod
    def from_env(cls, prefix: str) -> "Credential":
        """
        Read <PREFIX>_COOKIE, <PREFIX>_USERNAME, <PREFIX>_PASSWORD, <PREFIX>_TOTP_SEED.

        Args:
            prefix: Environment variable prefix, e.g. "APISCOUT_SHOP"
        """
        prefix = prefix.upper().rstrip("_")
        return cls(
            cookie=os.getenv(f"{prefix}_COOKIE") or None,
            username=os.getenv(f"{prefix}_USERNAME") or None,
            password=os.getenv(f"{prefix}_PASSWORD") or None,
            totp_seed=os.getenv(f"{prefix}_TOTP_SEED") or None,
        )

    @property
    def has_login(self) -> bool:
        return bool(self.username and self.password)

    @property
    def is_empty(self) -> bool:
        return not (self.cookie or self.has_login)

    def __repr__(self) -> str:
        def mask(value):
            return "***" if value else None
        return (
            f"Credential(cookie={mask(self.cookie)}, username={self.username!r}, "
            f"password={mask(self.password)}, totp_seed={mask(self.totp_seed)})"
        )


@dataclass
class AuthState:
    """Authentication state of a Session."""

    cookies: List[Dict[str, Any]] = field(default_factory=list)
    csrf_token: Optional[str] = None
    jwt: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds, from JWT exp
    generation: int = 0
    refreshed_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None, skew: float = 30.0) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - skew


@dataclass
class RequestSpec:
    """
    One outbound request issued through a Session.

    Header overrides win over the session header set (case-insensitive).
    """

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    data: Optional[Any] = None
    json_body: Optional[Any] = None
    expect: Optional[str] = None  # "json" | "text" | None
    timeout: Optional[float] = None  # milliseconds

    def __post_init__(self):
        self.method = self.method.upper()
        if self.expect not in (None, "json", "text"):
            raise ValueError(f"Unsupported expect value: {self.expect}")


class Session:
    """
    One persistent browser context per target site.

    The context and the discovery page are owned exclusively by the Session.
    Operations that touch the page or the request stream hold ``op_lock``;
    token refresh holds ``refresh_lock`` and bumps ``auth.generation``.

    ``exchanges`` is the log of every discovered and replayed exchange. Each
    re-run of a discovery appends again, so the log keeps at most
    ``log_limit`` entries and drops the oldest first.
    """

    def __init__(self, target, context, page, credential: Optional[Credential] = None,
                 user_agent: str = "", log_limit: int = EXCHANGE_LOG_LIMIT):
        self.target = target
        self.context = context
        self.page = page
        self.credential = credential
        self.user_agent = user_agent
        self.auth = AuthState()
        self.exchanges: List[CapturedExchange] = []
        self.log_limit = log_limit
        self.op_lock = asyncio.Lock()
        self.refresh_lock = asyncio.Lock()
        self.refresh_count = 0
        self.last_step = ""
        self.closed = False
        self.created_at = time.time()
        self._seq = 0

    @property
    def name(self) -> str:
        return self.target.SITE_NAME

    def next_seq(self) -> int:
        """Sequence numbers are shared by discovery and replay so the log stays ordered."""
        seq = self._seq
        self._seq += 1
        return seq

    def record(self, exchange: CapturedExchange) -> None:
        self.exchanges.append(exchange)
        overflow = len(self.exchanges) - self.log_limit
        if self.log_limit and overflow > 0:
            del self.exchanges[:overflow]

    def __repr__(self) -> str:
        status = "closed" if self.closed else "open"
        return (
            f"Session(target={self.name}, status={status}, "
            f"generation={self.auth.generation}, exchanges={len(self.exchanges)})"
        )
