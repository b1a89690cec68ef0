"""
Session layer - login, discovery and replay against one target per context

SessionManager lives in apiscout.session.manager (it depends on apiscout.sites,
which in turn uses apiscout.session.tokens).
"""

from .errors import (
    AuthenticationError,
    AuthorizationError,
    NavigationError,
    NetworkError,
    ScoutError,
    ScoutSignal,
    UpstreamFormatError,
    UpstreamStatusError,
)
from .models import AuthState, CapturedExchange, Credential, RequestSpec, Session
from .otp import OtpProvider, PromptOtpProvider, QueueOtpProvider, TotpProvider
from .plan import ClickStep, GotoStep, NavigationPlan, ScrollStep, WaitIdleStep, load_plan

__all__ = [
    'Session', 'AuthState', 'CapturedExchange', 'Credential', 'RequestSpec',
    'NavigationPlan', 'ScrollStep', 'ClickStep', 'WaitIdleStep', 'GotoStep', 'load_plan',
    'OtpProvider', 'QueueOtpProvider', 'PromptOtpProvider', 'TotpProvider',
    'ScoutError', 'ScoutSignal', 'AuthenticationError', 'AuthorizationError',
    'NavigationError', 'UpstreamFormatError', 'UpstreamStatusError', 'NetworkError',
]
