import pytest

from apiscout.session.manager import SessionManager
from fakes import FakeBrowser, FakeWebApp, make_site


@pytest.fixture
def app():
    return FakeWebApp()


@pytest.fixture
def browser(app):
    return FakeBrowser(app)


@pytest.fixture
def site():
    return make_site()


@pytest.fixture
def manager(browser):
    return SessionManager(browser, retry_delay=0, login_timeout=5)
