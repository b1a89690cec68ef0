"""
Session errors - normalized failure kinds for the session manager
v1.0 - Initial creation

Every error keeps the diagnostic context that was available when it was
raised: HTTP status, the literal raw response body and the last navigation
step. Nothing is truncated or discarded.
"""

from enum import Enum
from typing import Optional


class ScoutSignal(Enum):
    """Failure kinds surfaced to callers."""
    AUTHENTICATION = "authentication"   # login / OTP flow failed
    AUTHORIZATION = "authorization"     # 401/403 after one refresh
    NAVIGATION = "navigation"           # expected element never appeared
    UPSTREAM_FORMAT = "upstream_format" # body not in the expected format
    UPSTREAM_STATUS = "upstream_status" # other non-2xx response
    NETWORK = "network"                 # transient retries exhausted


class ScoutError(Exception):
    """Base error carrying a ScoutSignal plus diagnostic context."""

    signal: ScoutSignal = ScoutSignal.UPSTREAM_STATUS

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        raw_body: Optional[str] = None,
        url: str = "",
        last_step: str = "",
    ):
        self.status = status
        self.raw_body = raw_body
        self.url = url
        self.last_step = last_step
        super().__init__(message or self.signal.value)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.url:
            parts.append(f"url={self.url}")
        if self.last_step:
            parts.append(f"step={self.last_step}")
        return " | ".join(parts)


class AuthenticationError(ScoutError):
    signal = ScoutSignal.AUTHENTICATION


class AuthorizationError(ScoutError):
    signal = ScoutSignal.AUTHORIZATION


class NavigationError(ScoutError):
    signal = ScoutSignal.NAVIGATION


class UpstreamFormatError(ScoutError):
    signal = ScoutSignal.UPSTREAM_FORMAT


class UpstreamStatusError(ScoutError):
    signal = ScoutSignal.UPSTREAM_STATUS


class NetworkError(ScoutError):
    signal = ScoutSignal.NETWORK
