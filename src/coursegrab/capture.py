import asyncio
from urllib.parse import urlparse

from .constants import VIDEO_URL_HINTS
from .logger import Reporter
from .models import Discovery, StreamKind, VideoSource

PLAYBACK_JS = """
() => {
    let started = 0;
    document.querySelectorAll('video').forEach((video) => {
        video.muted = true;
        const playing = video.play();
        if (playing && playing.catch) {
            playing.catch(() => {});
        }
        started += 1;
    });
    if (started === 0) {
        const button = document.querySelector(
            '.vjs-big-play-button, button[aria-label*="play" i], [class*="play" i] button'
        );
        if (button) {
            button.click();
        }
    }
    return started;
}
"""

KIND_PRIORITY = {StreamKind.HLS: 0, StreamKind.DASH: 1, StreamKind.DIRECT: 2}


def classify_stream(url: str, content_type: str | None = None) -> StreamKind | None:
    """
    Decide whether a URL seen on the wire is a video stream, and which kind.

    HLS playlists win over DASH manifests, which win over plain video files.
    ``.mp4``/``.ts`` only count when the URL looks like it belongs to a player.

    Example
    -------
    >>> classify_stream("https://cdn.example.com/master.m3u8?token=1")
    StreamKind.HLS
    >>> classify_stream("https://cdn.example.com/logo.png", "image/png") is None
    True
    """
    if not url or url.startswith(("blob:", "data:")):
        return None

    lowered = url.lower()
    ctype = (content_type or "").lower()

    if ".m3u8" in lowered or "mpegurl" in ctype:
        return StreamKind.HLS
    if ".mpd" in lowered or "dash+xml" in ctype:
        return StreamKind.DASH
    if ctype.startswith("video/"):
        return StreamKind.DIRECT

    path = urlparse(lowered).path
    if path.endswith((".mp4", ".ts")) and any(hint in lowered for hint in VIDEO_URL_HINTS):
        return StreamKind.DIRECT
    return None


class NetworkVideoCapture:
    """
    Watch the session's network traffic for stream URLs.

    Candidates are classified as they arrive and pushed into a bounded queue;
    the listeners live only inside ``capture`` and are removed on every exit.
    """

    def __init__(
        self,
        session,
        reporter: Reporter | None = None,
        poll_interval: float = 0.5,
        max_candidates: int = 64,
    ):
        self.session = session
        self.reporter = reporter or Reporter()
        self.poll_interval = poll_interval
        self.max_candidates = max_candidates

    async def capture(self, timeout: float = 30.0) -> list[VideoSource]:
        """
        Observe traffic for up to ``timeout`` seconds or until the first stream shows up.

        :return list[VideoSource]: unique candidates, playlists first, then in
            arrival order. An empty list means nothing qualified.
        """
        queue: asyncio.Queue[VideoSource] = asyncio.Queue(maxsize=self.max_candidates)

        def on_traffic(url: str, content_type: str | None) -> None:
            kind = classify_stream(url, content_type)
            if kind is None or queue.full():
                return
            queue.put_nowait(VideoSource(url=url, stream_kind=kind, discovery=Discovery.NETWORK))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with self.session.network_traffic(on_traffic):
            await self._trigger_playback()
            while queue.empty():
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(self.poll_interval, remaining))

        candidates: list[VideoSource] = []
        seen: set[str] = set()
        while not queue.empty():
            source = queue.get_nowait()
            if source.url not in seen:
                seen.add(source.url)
                candidates.append(source)
        candidates.sort(key=lambda source: KIND_PRIORITY[source.stream_kind])

        if candidates:
            self.reporter.info(
                "capture.hit",
                f"Captured {len(candidates)} stream URL(s) from network",
                count=len(candidates),
            )
        else:
            self.reporter.debug("capture.empty", f"No stream URL seen within {timeout:.0f}s")
        return candidates

    async def _trigger_playback(self) -> None:
        try:
            await self.session.evaluate(PLAYBACK_JS)
        except Exception as e:
            self.reporter.debug("capture.playback_failed", f"Could not start playback: {e}")
