# -*- coding: utf-8 -*-
from types import SimpleNamespace

import pytest
from playwright.async_api import TimeoutError as PWTimeout

from dealhub.errors import NavigationError, NonRetryableError, PageGone
from dealhub.scraping.browser import BrowserSession


class FakePage:

    def __init__(self, failures=0, ready=True, html="<html><body>ok</body></html>", status=200):
        self.failures = failures
        self.status   = status
        self.ready    = ready
        self.html     = html
        self.gotos    = []
        self.scrolls  = 0
        self.closed   = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.gotos.append(url)
        if len(self.gotos) <= self.failures:
            raise PWTimeout(f"Timeout {timeout}ms exceeded")
        return SimpleNamespace(status=self.status)

    async def wait_for_selector(self, selector, timeout=None):
        if not self.ready:
            raise PWTimeout(f"waiting for {selector}")

    async def evaluate(self, script):
        self.scrolls += 1

    async def content(self):
        return self.html

    async def close(self):
        self.closed = True


@pytest.fixture
def session():
    return BrowserSession(max_retries=3, backoff_seconds=2.0, timeout_ms=30000)


async def test_navigate_succeeds_after_transient_failures(session, sleeps):
    page = FakePage(failures=2)
    await session.navigate(page, "https://www.amazon.in/deals")

    assert len(page.gotos) == 3
    assert sleeps == [2.0, 4.0]


async def test_navigate_gives_up_after_max_retries(session, sleeps):
    page = FakePage(failures=10)
    with pytest.raises(NavigationError) as exc:
        await session.navigate(page, "https://www.amazon.in/deals")

    assert len(page.gotos) == 3
    assert exc.value.attempts == 3
    assert exc.value.url == "https://www.amazon.in/deals"
    assert isinstance(exc.value.cause, PWTimeout)
    # no wait after the final attempt
    assert sleeps == [2.0, 4.0]


async def test_navigate_honours_explicit_retry_count(session, sleeps):
    page = FakePage(failures=10)
    with pytest.raises(NavigationError):
        await session.navigate(page, "https://www.flipkart.com/", retries=1)
    assert len(page.gotos) == 1
    assert sleeps == []


async def test_navigate_stops_at_once_on_a_dead_page(session, sleeps):
    page = FakePage(status=404)
    with pytest.raises(PageGone) as exc:
        await session.navigate(page, "https://www.amazon.in/dp/B000000OLD")

    assert exc.value.status == 404
    assert isinstance(exc.value, NavigationError)
    assert isinstance(exc.value, NonRetryableError)
    assert len(page.gotos) == 1
    assert sleeps == []


async def test_navigate_accepts_non_gone_error_status(session):
    page = FakePage(status=503)
    await session.navigate(page, "https://www.flipkart.com/")
    assert len(page.gotos) == 1


async def test_fetch_html_returns_content_and_closes_page(session, monkeypatch):
    page = FakePage(html="<html><body><div class='card'>x</div></body></html>")

    async def _new_page():
        return page

    monkeypatch.setattr(session, "new_page", _new_page)
    html = await session.fetch_html("https://www.croma.com/deals-of-the-day",
                                    ready_selector=".card", scroll=True)

    assert "card" in html
    assert page.scrolls == 3
    assert page.closed


async def test_fetch_html_tolerates_missing_ready_element(session, monkeypatch):
    page = FakePage(ready=False)

    async def _new_page():
        return page

    monkeypatch.setattr(session, "new_page", _new_page)
    html = await session.fetch_html("https://www.croma.com/x", ready_selector=".missing")

    assert "ok" in html
    assert page.closed


async def test_fetch_html_closes_page_when_navigation_fails(session, monkeypatch):
    page = FakePage(failures=10)

    async def _new_page():
        return page

    monkeypatch.setattr(session, "new_page", _new_page)
    with pytest.raises(NavigationError):
        await session.fetch_html("https://www.croma.com/x")
    assert page.closed


async def test_close_is_idempotent_on_an_unopened_session(session):
    await session.close()
    await session.close()
    assert not session.is_open
