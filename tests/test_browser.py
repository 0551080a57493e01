"""
BrowserSession against stand-in Playwright objects: page, context, browser
and the Playwright driver. No browser is launched.
"""

import asyncio
from types import SimpleNamespace

import pytest
from playwright.async_api import Error as PlaywrightError

from coursegrab.browser import BrowserSession

URL = "https://school.example/course"


class FakeElement:
    def __init__(self, error=None):
        self.error = error
        self.clicks = []

    async def click(self, timeout=None):
        self.clicks.append(timeout)
        if self.error is not None:
            raise self.error


class FakeLocator:
    def __init__(self, elements):
        self.elements = elements

    async def all(self):
        return self.elements


class FakePage:
    def __init__(self, goto_errors=(), loaded_url=None, elements=None, present=()):
        self.goto_errors = list(goto_errors)
        self.loaded_url = loaded_url
        self.elements = elements or {}
        self.present = set(present)
        self.url = "about:blank"
        self.gotos = []
        self.listeners = {}

    async def goto(self, url, wait_until=None, timeout=None):
        self.gotos.append((url, wait_until, timeout))
        if self.loaded_url is not None:
            self.url = self.loaded_url
        if self.goto_errors:
            raise self.goto_errors.pop(0)
        self.url = url

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners[event].remove(handler)

    def emit(self, event, payload):
        for handler in list(self.listeners.get(event, [])):
            handler(payload)

    def locator(self, selector):
        return FakeLocator(self.elements.get(selector, []))

    async def wait_for_selector(self, selector, timeout=None):
        if selector not in self.present:
            raise PlaywrightError(f"Timeout {timeout}ms exceeded.")

    async def evaluate(self, script, arg=None):
        return {"script": script, "arg": arg}

    async def content(self):
        return "<html></html>"


class FakeContext:
    def __init__(self, cookies=(), close_error=None):
        self._cookies = list(cookies)
        self.close_error = close_error
        self.cookie_urls = []
        self.closed = 0

    async def cookies(self, urls):
        self.cookie_urls.append(urls)
        return self._cookies

    async def close(self):
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error


class FakeBrowser:
    def __init__(self):
        self.closed = 0

    async def close(self):
        self.closed += 1


class FakePlaywright:
    def __init__(self, stop_error=None):
        self.stop_error = stop_error
        self.stopped = 0

    async def stop(self):
        self.stopped += 1
        if self.stop_error is not None:
            raise self.stop_error


def open_session(settings, reporter, page=None, context=None, playwright=None, **kwargs):
    session = BrowserSession(settings, reporter, **kwargs)
    session.page = page or FakePage()
    session._context = context or FakeContext()
    session._browser = FakeBrowser()
    session._playwright = playwright or FakePlaywright()
    return session


@pytest.fixture(autouse=True)
def no_auth_settle(monkeypatch):
    monkeypatch.setattr("coursegrab.browser.AUTH_SETTLE_DELAY", 0)


def test_regular_navigation_waits_for_network_idle(settings, reporter):
    page = FakePage()
    session = open_session(settings, reporter, page)

    assert asyncio.run(session.navigate_to(URL)) is True
    assert page.gotos == [(URL, "networkidle", settings.timeout)]
    assert session.url == URL


def test_auth_navigation_uses_dom_content_and_long_timeout(settings, reporter):
    page = FakePage()
    session = open_session(settings, reporter, page)

    assert asyncio.run(session.navigate_to(URL, is_auth_flow=True)) is True
    assert page.gotos == [(URL, "domcontentloaded", 120000)]


def test_timeout_on_loaded_page_counts_as_success(settings, reporter):
    page = FakePage(
        goto_errors=[PlaywrightError("Timeout 30000ms exceeded.")], loaded_url=URL
    )
    session = open_session(settings, reporter, page)

    assert asyncio.run(session.navigate_to(URL)) is True
    assert len(page.gotos) == 1
    assert reporter.named("browser.navigate_timeout")[0].fields["url"] == URL
    assert not reporter.named("browser.navigate_failed")


def test_failed_navigation_retries_with_growing_timeout(settings, reporter):
    errors = [PlaywrightError("net::ERR_NAME_NOT_RESOLVED")] * settings.retry_attempts
    page = FakePage(goto_errors=errors)
    session = open_session(settings, reporter, page)

    assert asyncio.run(session.navigate_to(URL)) is False
    assert [timeout for _, _, timeout in page.gotos] == [
        settings.timeout + attempt * 15000 for attempt in range(settings.retry_attempts)
    ]
    assert len(reporter.named("browser.navigate_retry")) == settings.retry_attempts - 1
    [failed] = reporter.named("browser.navigate_failed")
    assert "ERR_NAME_NOT_RESOLVED" in failed.message


def test_navigation_without_page_fails(settings, reporter):
    session = BrowserSession(settings, reporter)

    assert asyncio.run(session.navigate_to(URL)) is False
    assert reporter.named("browser.navigate_failed")
    assert session.url == ""


def test_expand_all_sections_counts_successful_clicks(settings, reporter):
    stuck = FakeElement(error=PlaywrightError("Element is not visible"))
    first, second = FakeElement(), FakeElement()
    page = FakePage(
        elements={
            '[aria-expanded="false"]': [first, stuck],
            "details:not([open]) > summary": [second],
        }
    )
    session = open_session(settings, reporter, page)

    expanded = asyncio.run(session.expand_all_sections())

    assert expanded == 2
    assert first.clicks and second.clicks and stuck.clicks
    assert reporter.named("browser.expanded")[0].fields["count"] == 2


def test_network_traffic_detaches_listeners_on_error(settings, reporter):
    page = FakePage()
    session = open_session(settings, reporter, page)
    seen = []

    async def watch():
        async with session.network_traffic(lambda url, content_type: seen.append((url, content_type))):
            page.emit("request", SimpleNamespace(url="https://cdn/master.m3u8"))
            page.emit(
                "response",
                SimpleNamespace(url="https://cdn/file", headers={"content-type": "video/mp4"}),
            )
            raise RuntimeError("capture aborted")

    with pytest.raises(RuntimeError):
        asyncio.run(watch())

    assert seen == [("https://cdn/master.m3u8", None), ("https://cdn/file", "video/mp4")]
    assert page.listeners == {"request": [], "response": []}


def test_request_headers_carry_session_cookies(settings, reporter):
    page = FakePage()
    page.url = URL
    context = FakeContext(cookies=[{"name": "sid", "value": "abc"}, {"name": "lang", "value": "en"}])
    session = open_session(settings, reporter, page, context)

    headers = asyncio.run(session.request_headers("https://cdn/files/guide.pdf"))

    assert headers == {
        "User-Agent": settings.user_agent,
        "Referer": URL,
        "Cookie": "sid=abc; lang=en",
    }
    assert context.cookie_urls == [["https://cdn/files/guide.pdf"]]


def test_request_headers_without_browser(settings, reporter):
    session = BrowserSession(settings, reporter)

    assert asyncio.run(session.request_headers(URL)) == {"User-Agent": settings.user_agent}


def test_wait_for_auth_blocks_on_control_channel(settings, reporter):
    calls = []

    async def operator():
        calls.append("enter")
        return "\n"

    session = open_session(settings, reporter, control_channel=operator)
    asyncio.run(session.wait_for_auth())

    assert calls == ["enter"]
    assert reporter.named("auth.resumed")


def test_wait_for_selector_reports_miss_as_false(settings, reporter):
    session = open_session(settings, reporter, FakePage(present={".player"}))

    assert asyncio.run(session.wait_for_selector(".player", 1000)) is True
    assert asyncio.run(session.wait_for_selector(".missing", 1000)) is False


def test_close_is_idempotent(settings, reporter):
    context, playwright = FakeContext(), FakePlaywright()
    session = open_session(settings, reporter, context=context, playwright=playwright)
    browser = session._browser

    asyncio.run(session.close())
    asyncio.run(session.close())

    assert (context.closed, browser.closed, playwright.stopped) == (1, 1, 1)
    assert session.page is None
    assert len(reporter.named("browser.closed")) == 1


def test_close_swallows_teardown_errors(settings, reporter):
    context = FakeContext(close_error=PlaywrightError("Target closed"))
    playwright = FakePlaywright(stop_error=PlaywrightError("Connection closed"))
    session = open_session(settings, reporter, context=context, playwright=playwright)
    browser = session._browser

    asyncio.run(session.close())

    assert browser.closed == 1
    assert playwright.stopped == 1
    assert len(reporter.named("browser.close_error")) == 2
    assert session._playwright is None
