"""Tests for OTP providers."""
import asyncio

import pyotp
import pytest

from apiscout.session.models import Credential
from apiscout.session.otp import OtpProvider, PromptOtpProvider, QueueOtpProvider, TotpProvider, provider_for


@pytest.mark.asyncio
async def test_queue_provider_waits_for_supply():
    provider = QueueOtpProvider()
    waiter = asyncio.create_task(provider.get_code("shop"))
    await asyncio.sleep(0)

    assert provider.requested.is_set()
    assert not waiter.done()

    provider.supply(" 123456 ")
    assert await waiter == "123456"
    assert not provider.requested.is_set()
    assert provider.last_site == "shop"


@pytest.mark.asyncio
async def test_totp_provider_generates_valid_code():
    seed = pyotp.random_base32()
    code = await TotpProvider(seed).get_code("shop")
    assert pyotp.TOTP(seed).verify(code, valid_window=1)


@pytest.mark.asyncio
async def test_prompt_provider_reads_terminal(monkeypatch):
    monkeypatch.setattr("builtins.input", lambda prompt: " 654321\n")
    assert await PromptOtpProvider().get_code("shop") == "654321"


def test_provider_for_prefers_totp_seed():
    fallback = QueueOtpProvider()
    assert isinstance(provider_for(Credential(totp_seed=pyotp.random_base32()), fallback), TotpProvider)
    assert provider_for(Credential(username="a", password="b"), fallback) is fallback
    assert provider_for(None, None) is None


def test_otp_provider_is_abstract():
    with pytest.raises(TypeError):
        OtpProvider()
