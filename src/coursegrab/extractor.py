from .capture import classify_stream
from .constants import UNKNOWN_COURSE, VIDEO_PLAYER_TIMEOUT
from .errors import ExtractionMiss
from .logger import Reporter
from .models import (
    Discovery,
    DocumentReference,
    DomVideo,
    LessonReference,
    Selectors,
    StreamKind,
    VideoSource,
)
from .utils import basename_from_url

TITLE_JS = """
(selector) => {
    const element = document.querySelector(selector);
    return element ? element.textContent.trim() : null;
}
"""

LESSONS_JS = """
(selector) => Array.from(document.querySelectorAll(selector)).map((link) => {
    let href = link.href;
    if (!href) {
        const anchor = link.querySelector('a[href]');
        href = anchor ? anchor.href : '';
    }
    return {url: href || '', title: (link.textContent || '').trim()};
})
"""

VIDEOS_JS = """
(sel) => Array.from(document.querySelectorAll(sel.player)).map((video, index) => {
    const sources = Array.from(video.querySelectorAll(sel.source))
        .filter((source) => source.src)
        .map((source) => ({src: source.src, type: source.type || ''}));
    if (sources.length === 0 && video.src) {
        sources.push({src: video.src, type: video.type || ''});
    }
    return {index, sources, poster: video.poster || ''};
})
"""

DOCUMENTS_JS = """
(selector) => Array.from(document.querySelectorAll(selector)).map((link) => ({
    href: link.href || '',
    text: (link.textContent || '').trim(),
}))
"""


class SelectorExtractor:
    """
    Pull course structure out of the live page using a website's selectors.

    Every method degrades to an empty result when its selector misses; a miss
    is reported as an ``extraction.miss`` warning and never raised.
    """

    def __init__(self, session, selectors: Selectors, reporter: Reporter | None = None):
        self.session = session
        self.selectors = selectors
        self.reporter = reporter or Reporter()

    def _miss(self, what: str, error: Exception | str) -> None:
        miss = ExtractionMiss(f"No {what} found: {error}")
        self.reporter.warning("extraction.miss", str(miss), what=what)

    async def get_course_title(self) -> str:
        try:
            title = await self.session.evaluate(TITLE_JS, self.selectors.course_title)
        except Exception as e:
            self._miss("course title", e)
            return UNKNOWN_COURSE
        if not title:
            self._miss("course title", self.selectors.course_title)
            return UNKNOWN_COURSE
        return title

    async def extract_lessons(self) -> list[LessonReference]:
        """
        Lesson links in page order, one per unique URL.

        Collapsed sections are expanded first since most course outlines
        hide their lessons until clicked.
        """
        if not self.selectors.lesson_list:
            return []

        await self.session.expand_all_sections()

        try:
            items = await self.session.evaluate(LESSONS_JS, self.selectors.lesson_list)
        except Exception as e:
            self._miss("lesson list", e)
            return []

        lessons: list[LessonReference] = []
        seen: set[str] = set()
        for item in items or []:
            url = (item.get("url") or "").strip()
            title = " ".join((item.get("title") or "").split())
            if not url or not title or url in seen:
                continue
            seen.add(url)
            lessons.append(LessonReference(index=len(lessons), url=url, title=title))

        if not lessons:
            self._miss("lesson list", self.selectors.lesson_list)
        return lessons

    async def extract_videos(self) -> list[DomVideo]:
        found = await self.session.wait_for_selector(
            self.selectors.video_player, VIDEO_PLAYER_TIMEOUT
        )
        if not found:
            self._miss("video element", self.selectors.video_player)
            return []

        try:
            elements = await self.session.evaluate(
                VIDEOS_JS,
                {"player": self.selectors.video_player, "source": self.selectors.video_source},
            )
        except Exception as e:
            self._miss("video element", e)
            return []

        videos = []
        for element in elements or []:
            sources = [
                VideoSource(
                    url=source["src"],
                    stream_kind=classify_stream(source["src"], source.get("type"))
                    or StreamKind.DIRECT,
                    discovery=Discovery.DOM,
                )
                for source in element.get("sources", [])
                if source.get("src")
            ]
            videos.append(
                DomVideo(index=element["index"], sources=sources, poster=element.get("poster", ""))
            )
        return videos

    async def extract_documents(self) -> list[DocumentReference]:
        try:
            items = await self.session.evaluate(DOCUMENTS_JS, self.selectors.documents)
        except Exception as e:
            self._miss("documents", e)
            return []

        documents: list[DocumentReference] = []
        seen: set[str] = set()
        for item in items or []:
            url = item.get("href") or ""
            if not url or url in seen:
                continue
            seen.add(url)
            filename = basename_from_url(url) or f"document_{len(documents) + 1}"
            documents.append(
                DocumentReference(url=url, label=item.get("text", ""), filename=filename)
            )
        return documents
