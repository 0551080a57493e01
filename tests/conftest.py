"""
Shared fixtures: a scripted browser session, a fake rnet client and a
recording reporter. Nothing here touches a real browser or the network.
"""

from contextlib import asynccontextmanager

import pytest

from coursegrab.capture import PLAYBACK_JS
from coursegrab.errors import NavigationFailure
from coursegrab.extractor import DOCUMENTS_JS, LESSONS_JS, TITLE_JS, VIDEOS_JS
from coursegrab.logger import Reporter
from coursegrab.materializer import IMAGES_JS
from coursegrab.models import Settings


def make_page(
    title=None,
    lessons=(),
    videos=(),
    documents=(),
    images=(),
    traffic=(),
    html="<html><head></head><body><p>lesson</p></body></html>",
    present=(),
    errors=None,
):
    """
    One scripted page.

    ``videos`` is a list of source-URL lists, one per ``<video>`` element.
    ``traffic`` is a list of ``(url, content_type)`` pairs seen once playback
    starts. ``errors`` maps a script name (``title``, ``lessons``, ...) to the
    exception ``evaluate`` raises for it.
    """
    present = set(present)
    if videos:
        present.add("video")
    return {
        "title": title,
        "lessons": [{"url": url, "title": text} for url, text in lessons],
        "videos": [
            {"index": i, "sources": [{"src": src, "type": ""} for src in sources], "poster": ""}
            for i, sources in enumerate(videos)
        ],
        "documents": [{"href": href, "text": text} for href, text in documents],
        "images": list(images),
        "traffic": list(traffic),
        "html": html,
        "present": present,
        "errors": errors or {},
    }


class FakeSession:
    """Stands in for ``BrowserSession``; pages are keyed by URL."""

    SCRIPTS = {
        TITLE_JS: "title",
        LESSONS_JS: "lessons",
        VIDEOS_JS: "videos",
        DOCUMENTS_JS: "documents",
        IMAGES_JS: "images",
        PLAYBACK_JS: "playback",
    }

    def __init__(self, pages, fail_init=False, unreachable=()):
        self.pages = pages
        self.fail_init = fail_init
        self.unreachable = set(unreachable)
        self.current = None
        self.visited = []
        self.auth_waits = 0
        self.expanded = 0
        self.closed = 0
        self.handlers = []
        self.listener_peak = 0

    @property
    def url(self):
        return self.current or ""

    @property
    def page(self):
        return self.pages.get(self.current, make_page())

    async def initialize(self):
        if self.fail_init:
            raise NavigationFailure("Could not start chromium: no browser")

    async def navigate_to(self, url, is_auth_flow=False):
        self.visited.append((url, is_auth_flow))
        if url in self.unreachable or url not in self.pages:
            return False
        self.current = url
        return True

    async def wait_for_auth(self):
        self.auth_waits += 1

    async def expand_all_sections(self):
        self.expanded += 1
        return 0

    async def evaluate(self, script, arg=None):
        key = self.SCRIPTS[script]
        error = self.page["errors"].get(key)
        if error is not None:
            raise error
        if key == "playback":
            for url, content_type in self.page["traffic"]:
                for handler in list(self.handlers):
                    handler(url, content_type)
            return len(self.page["videos"])
        return self.page[key]

    async def wait_for_selector(self, selector, timeout):
        return selector in self.page["present"]

    async def content(self):
        return self.page["html"]

    @asynccontextmanager
    async def network_traffic(self, handler):
        self.handlers.append(handler)
        self.listener_peak = max(self.listener_peak, len(self.handlers))
        try:
            yield
        finally:
            self.handlers.remove(handler)

    async def request_headers(self, url):
        return {"User-Agent": "pytest", "Referer": self.url}

    async def close(self):
        self.closed += 1


class FakeStreamer:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class FakeResponse:
    def __init__(self, status=200, chunks=(b"data",), content_length=None, error=None):
        self.status = status
        self.chunks = list(chunks)
        self.content_length = (
            sum(len(chunk) for chunk in self.chunks) if content_length is None else content_length
        )
        self.error = error
        self.closed = False

    @property
    def ok(self):
        return 200 <= self.status < 300

    def stream(self):
        return FakeStreamer(self.chunks, self.error)

    async def close(self):
        self.closed = True


class FakeClient:
    """
    Mimics ``rnet.Client.get``. ``routes`` maps a URL to a ``FakeResponse``
    or a list of them (served in order, the last one repeating).
    Unknown URLs answer 404.
    """

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    async def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        route = self.routes.get(url, FakeResponse(status=404, chunks=()))
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        return route

    def urls(self):
        return [url for url, _ in self.calls]


@pytest.fixture
def reporter():
    return Reporter(echo=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        download_path=str(tmp_path / "downloads"),
        retry_attempts=2,
        retry_delay=0,
        capture_timeout=50,
        poll_interval=0.01,
        settle_delay=0,
    )
