"""Tests for the error hierarchy."""
import pytest

from apiscout.session.errors import (
    AuthenticationError,
    AuthorizationError,
    NavigationError,
    NetworkError,
    ScoutError,
    ScoutSignal,
    UpstreamFormatError,
    UpstreamStatusError,
)


@pytest.mark.parametrize("cls,signal", [
    (AuthenticationError, ScoutSignal.AUTHENTICATION),
    (AuthorizationError, ScoutSignal.AUTHORIZATION),
    (NavigationError, ScoutSignal.NAVIGATION),
    (UpstreamFormatError, ScoutSignal.UPSTREAM_FORMAT),
    (UpstreamStatusError, ScoutSignal.UPSTREAM_STATUS),
    (NetworkError, ScoutSignal.NETWORK),
])
def test_each_error_carries_its_signal(cls, signal):
    err = cls("boom")
    assert isinstance(err, ScoutError)
    assert err.signal is signal


def test_error_keeps_context():
    err = AuthorizationError("denied", status=403, raw_body="<b>no</b>", url="https://a.test/x", last_step="replay")
    assert err.raw_body == "<b>no</b>"
    text = str(err)
    assert "denied" in text
    assert "status=403" in text
    assert "url=https://a.test/x" in text
    assert "step=replay" in text


def test_default_message_is_signal_name():
    assert str(NavigationError()) == "navigation"
