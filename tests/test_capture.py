import asyncio

import pytest
from conftest import FakeSession, make_page

from coursegrab.capture import NetworkVideoCapture, classify_stream
from coursegrab.models import Discovery, StreamKind

URL = "https://school.example/lesson"


@pytest.mark.parametrize(
    "url, content_type, expected",
    [
        ("https://cdn/master.m3u8?token=1", None, StreamKind.HLS),
        ("https://cdn/playlist", "application/vnd.apple.mpegurl", StreamKind.HLS),
        ("https://cdn/manifest.mpd", None, StreamKind.DASH),
        ("https://cdn/manifest", "application/dash+xml", StreamKind.DASH),
        ("https://cdn/file", "video/mp4", StreamKind.DIRECT),
        ("https://cdn/video/lesson1.mp4", None, StreamKind.DIRECT),
        ("https://cdn/assets/intro.mp4", None, None),
        ("https://cdn/logo.png", "image/png", None),
        ("blob:https://school.example/1234", "video/mp4", None),
        ("data:video/mp4;base64,AAAA", None, None),
        ("", None, None),
    ],
)
def test_classify_stream(url, content_type, expected):
    assert classify_stream(url, content_type) is expected


def run_capture(traffic, reporter, timeout=0.05):
    session = FakeSession({URL: make_page(traffic=traffic)})
    asyncio.run(session.navigate_to(URL))
    capture = NetworkVideoCapture(session, reporter, poll_interval=0.01)
    return asyncio.run(capture.capture(timeout)), session


def test_capture_prefers_playlists_and_dedupes(reporter):
    traffic = [
        ("https://cdn/video/clip.mp4", "video/mp4"),
        ("https://school.example/app.js", "application/javascript"),
        ("https://cdn/master.m3u8", None),
        ("https://cdn/master.m3u8", "application/vnd.apple.mpegurl"),
        ("https://cdn/manifest.mpd", None),
    ]

    candidates, session = run_capture(traffic, reporter)

    assert [(c.url, c.stream_kind) for c in candidates] == [
        ("https://cdn/master.m3u8", StreamKind.HLS),
        ("https://cdn/manifest.mpd", StreamKind.DASH),
        ("https://cdn/video/clip.mp4", StreamKind.DIRECT),
    ]
    assert all(c.discovery is Discovery.NETWORK for c in candidates)
    assert session.handlers == []
    assert reporter.named("capture.hit")


def test_capture_timeout_returns_empty_and_detaches(reporter):
    candidates, session = run_capture([("https://school.example/app.css", "text/css")], reporter)

    assert candidates == []
    assert session.handlers == []
    assert session.listener_peak == 1
    assert reporter.named("capture.empty")


def test_capture_is_bounded(reporter):
    session = FakeSession(
        {URL: make_page(traffic=[(f"https://cdn/{i}.m3u8", None) for i in range(10)])}
    )
    asyncio.run(session.navigate_to(URL))
    capture = NetworkVideoCapture(session, reporter, poll_interval=0.01, max_candidates=3)

    candidates = asyncio.run(capture.capture(0.05))

    assert [c.url for c in candidates] == [f"https://cdn/{i}.m3u8" for i in range(3)]


def test_playback_failure_still_waits_for_traffic(reporter):
    page = make_page(errors={"playback": RuntimeError("no player")})
    session = FakeSession({URL: page})
    asyncio.run(session.navigate_to(URL))
    capture = NetworkVideoCapture(session, reporter, poll_interval=0.01)

    assert asyncio.run(capture.capture(0.02)) == []
    assert reporter.named("capture.playback_failed")
    assert session.handlers == []
