"""
OTP providers - where the second-factor code comes from during login
v1.0 - Initial creation

The login flow awaits ``provider.get_code(site_name)`` when the OTP prompt
appears, so ``start()`` stays suspended until a code is available.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import pyotp

logger = logging.getLogger(__name__)


class OtpProvider(ABC):
    """Base class; subclasses return a code for the named site."""

    @abstractmethod
    async def get_code(self, site_name: str) -> str:
        pass


class QueueOtpProvider(OtpProvider):
    """
    Caller-supplied codes.

    ``requested`` is set while a login is waiting for a code, so the caller
    can notify a human and then call ``supply()``.
    """

    def __init__(self):
        self._codes: asyncio.Queue = asyncio.Queue()
        self.requested = asyncio.Event()
        self.last_site: Optional[str] = None

    def supply(self, code: str) -> None:
        self._codes.put_nowait(str(code).strip())

    async def get_code(self, site_name: str) -> str:
        self.last_site = site_name
        self.requested.set()
        logger.info(f"Waiting for OTP code for {site_name}")
        try:
            return await self._codes.get()
        finally:
            self.requested.clear()


class PromptOtpProvider(OtpProvider):
    """Synchronous terminal prompt, run off the event loop."""

    def __init__(self, prompt: str = "Enter OTP code for {site}: "):
        self.prompt = prompt

    async def get_code(self, site_name: str) -> str:
        code = await asyncio.to_thread(input, self.prompt.format(site=site_name))
        return code.strip()


class TotpProvider(OtpProvider):
    """Time-based codes generated from a base32 seed."""

    def __init__(self, seed: str):
        self._totp = pyotp.TOTP(seed.replace(" ", ""))

    async def get_code(self, site_name: str) -> str:
        code = self._totp.now()
        logger.info(f"Generated TOTP code for {site_name}")
        return code


def provider_for(credential, fallback: Optional[OtpProvider] = None) -> Optional[OtpProvider]:
    """TOTP seed in the credential wins; otherwise the caller's provider."""
    if credential is not None and credential.totp_seed:
        return TotpProvider(credential.totp_seed)
    return fallback
