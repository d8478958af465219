"""
Shared fixtures: a controllable clock and Playwright stand-ins.

No test touches the network or launches a real browser.
"""

import os
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx
import pytest

# Set before config is imported anywhere
os.environ.setdefault("WARM_CACHE_ON_STARTUP", "0")
os.environ.setdefault("ANILIST_MIN_INTERVAL", "0")
os.environ.setdefault("APP_ENV", "test")


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_page(url: str = "https://example.test/") -> Mock:
    page = Mock()
    page.url = url
    page.goto = AsyncMock()
    page.content = AsyncMock(return_value="<html></html>")
    page.evaluate = AsyncMock(return_value=None)
    page.wait_for_selector = AsyncMock()
    page.wait_for_function = AsyncMock()
    return page


def make_browser(page: Mock | None = None) -> Mock:
    """A Playwright Browser whose contexts all hand out ``page``."""
    page = page or make_page()
    context = Mock()
    context.new_page = AsyncMock(return_value=page)
    context.route = AsyncMock()
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.is_connected = Mock(return_value=True)
    browser.close = AsyncMock()
    browser.context = context
    browser.page = page
    return browser


@pytest.fixture
def fake_page() -> Mock:
    return make_page()


@pytest.fixture
def fake_browser(fake_page: Mock) -> Mock:
    return make_browser(fake_page)


@pytest.fixture
def anilist_challenge(monkeypatch):
    """AniList answers every query with a 200 HTML challenge page."""
    import anilist
    import config

    anilist.clear_caches()
    monkeypatch.setattr(anilist, "_last_request", 0.0)
    monkeypatch.setattr(config, "ANILIST_MIN_INTERVAL", 0)
    monkeypatch.setattr(config, "ANILIST_RETRY_DELAY", 0)

    real_client = httpx.AsyncClient
    challenge = httpx.Response(200, text="<html>Cloudflare challenge</html>", headers={"content-type": "text/html"})

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(lambda request: challenge), **kwargs)

    with patch("anilist.httpx.AsyncClient", side_effect=factory):
        yield
    anilist.clear_caches()
