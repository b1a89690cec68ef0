"""
Browser management modules
v3.0 - BrowserSession replaces CDPSession; one context per target session
"""

from .browser_session import BrowserSession
from .cdp_launcher import ensure_cdp_available, check_cdp_available, get_cdp_url

__all__ = ['BrowserSession', 'ensure_cdp_available', 'check_cdp_available', 'get_cdp_url']
