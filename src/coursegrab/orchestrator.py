"""
Course download pipeline.

One course run walks an explicit state machine::

    INIT -> NAVIGATED -> [AUTHENTICATED] -> TITLE_EXTRACTED -> STRUCTURE_CREATED
         -> LESSONS -> MANIFEST_WRITTEN -> INDEX_GENERATED -> DONE

and each lesson walks its own::

    NAVIGATE_LESSON -> CAPTURE_VIDEO -> SAVE_HTML -> DOWNLOAD_IMAGES
                    -> DOWNLOAD_DOCS -> RECORD   (or FAILED)

Failing to start the browser or to open the course page moves the run to
ABORTED and the error propagates. A failing lesson is recorded as FAILED and
the loop moves on. The browser session is closed on every exit path.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from .browser import BrowserSession
from .capture import NetworkVideoCapture
from .documents import DocumentDownloader
from .downloader import DownloadEngine, DownloadPool
from .errors import LessonError, NavigationFailure
from .extractor import SelectorExtractor
from .file_manager import FileManager, NameRegistry, sanitize_filename
from .logger import Reporter
from .materializer import HtmlMaterializer
from .models import (
    CourseManifest,
    LessonReference,
    LessonStatus,
    ManifestDocument,
    ManifestLesson,
    ManifestVideo,
    Settings,
    VideoSource,
    WebsiteProfile,
)
from .utils import TqdmProgress, website_name


class CourseState(str, Enum):
    INIT = "init"
    NAVIGATED = "navigated"
    AUTHENTICATED = "authenticated"
    TITLE_EXTRACTED = "title_extracted"
    STRUCTURE_CREATED = "structure_created"
    LESSONS = "lessons"
    MANIFEST_WRITTEN = "manifest_written"
    INDEX_GENERATED = "index_generated"
    DONE = "done"
    ABORTED = "aborted"


class LessonState(str, Enum):
    PENDING = "pending"
    NAVIGATE_LESSON = "navigate_lesson"
    CAPTURE_VIDEO = "capture_video"
    SAVE_HTML = "save_html"
    DOWNLOAD_IMAGES = "download_images"
    DOWNLOAD_DOCS = "download_docs"
    RECORD = "record"
    FAILED = "failed"


@dataclass
class LessonOutcome:
    lesson: LessonReference
    state: LessonState = LessonState.PENDING
    history: list[LessonState] = field(default_factory=list)
    video: ManifestVideo | None = None
    html_path: str | None = None
    documents: list[ManifestDocument] = field(default_factory=list)
    error: str | None = None

    def advance(self, state: LessonState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def failed(self) -> bool:
        return self.state is LessonState.FAILED


@dataclass
class CourseResult:
    success: bool
    course_path: Path
    manifest: CourseManifest
    lesson_states: list[LessonOutcome]
    states: list[CourseState]


class LessonRunner:
    """Everything one course run needs to take a single lesson through its states."""

    def __init__(
        self,
        session,
        settings: Settings,
        profile: WebsiteProfile,
        course_path: Path,
        file_manager: FileManager,
        reporter: Reporter,
        client=None,
        show_progress: bool = True,
    ):
        self.session = session
        self.settings = settings
        self.profile = profile
        self.course_path = course_path
        self.reporter = reporter
        self.show_progress = show_progress

        pool = DownloadPool.from_settings(settings)
        self.extractor = SelectorExtractor(session, profile.selectors, reporter)
        self.capture = NetworkVideoCapture(session, reporter, poll_interval=settings.poll_interval)
        self.engine = DownloadEngine(
            settings, reporter, client=client, headers_provider=session.request_headers
        )
        document_names = NameRegistry()
        self.materializer = HtmlMaterializer(
            self.engine, file_manager, pool, reporter, document_names=document_names
        )
        self.documents = DocumentDownloader(
            self.engine, file_manager, pool, reporter, names=document_names
        )

    async def select_video_source(self) -> VideoSource | None:
        """
        Pick the lesson's video: a network-captured stream first, the DOM only
        as a fallback. ``blob:`` handles are never returned.
        """
        captured = await self.capture.capture(self.settings.capture_timeout / 1000)
        network = [source for source in captured if not source.is_blob]
        if network:
            source = network[0]
            self.reporter.info(
                "video.selected",
                f"Using network-captured URL ({source.stream_kind.value})",
                discovery=source.discovery.value,
                url=source.url,
            )
            return source

        dom_videos = await self.extractor.extract_videos()
        dom_sources = [source for video in dom_videos for source in video.sources]
        usable = [source for source in dom_sources if not source.is_blob]
        if usable:
            source = usable[0]
            self.reporter.info(
                "video.selected",
                "Using DOM-extracted URL",
                discovery=source.discovery.value,
                url=source.url,
            )
            return source
        if dom_sources:
            self.reporter.warning(
                "video.blob_skipped", "Skipping blob URL - no real video URL found"
            )
        return None

    def _advance(self, outcome: LessonOutcome, state: LessonState) -> None:
        outcome.advance(state)
        self.reporter.debug(
            "lesson.state",
            f"Lesson {outcome.lesson.index + 1}: {state.value}",
            lesson=outcome.lesson.index,
            state=state.value,
        )

    async def run(self, lesson: LessonReference, implicit: bool = False) -> LessonOutcome:
        outcome = LessonOutcome(lesson)
        base_name = sanitize_filename(f"{lesson.index + 1}_{lesson.title}")
        try:
            self._advance(outcome, LessonState.NAVIGATE_LESSON)
            if not implicit and not await self.session.navigate_to(lesson.url):
                raise LessonError(f"Could not open lesson page {lesson.url}")
            if self.profile.wait_for_selector:
                found = await self.session.wait_for_selector(
                    self.profile.wait_for_selector, self.settings.timeout
                )
                if not found:
                    self.reporter.warning(
                        "lesson.wait_miss",
                        f"'{self.profile.wait_for_selector}' did not appear, continuing",
                    )

            self._advance(outcome, LessonState.CAPTURE_VIDEO)
            source = await self.select_video_source()
            if source is not None:
                outcome.video = await self._download_video(lesson, source, base_name)

            self._advance(outcome, LessonState.SAVE_HTML)
            video_filename = Path(outcome.video.path).name if outcome.video else None
            html_path = await self.materializer.save_page(
                self.session, self.course_path / "html", base_name, video_filename
            )
            outcome.html_path = html_path.relative_to(self.course_path).as_posix()

            self._advance(outcome, LessonState.DOWNLOAD_IMAGES)
            await self.materializer.download_images(self.session, self.course_path)

            self._advance(outcome, LessonState.DOWNLOAD_DOCS)
            docs = await self.extractor.extract_documents()
            if docs:
                outcome.documents = await self.documents.download_documents(
                    docs, self.course_path, lesson.index
                )

            self._advance(outcome, LessonState.RECORD)
        except Exception as e:
            outcome.error = str(e)
            self._advance(outcome, LessonState.FAILED)
            self.reporter.error(
                "lesson.failed",
                f"Failed to download lesson {lesson.title}: {e}",
                lesson=lesson.index,
                exception=e,
            )
        return outcome

    async def _download_video(
        self, lesson: LessonReference, source: VideoSource, base_name: str
    ) -> ManifestVideo | None:
        dest = self.course_path / "videos" / f"{base_name}.mp4"
        progress = TqdmProgress(dest.name) if self.show_progress else None
        with progress or nullcontext():
            result = await self.engine.download_video(source, dest, progress)
        if not result.ok:
            return None
        return ManifestVideo(
            title=lesson.title,
            path=dest.relative_to(self.course_path).as_posix(),
            lesson_index=lesson.index,
            source_url=source.url,
            stream_kind=source.stream_kind,
            discovery=source.discovery,
        )


class CourseDownloadOrchestrator:
    def __init__(
        self,
        settings: Settings,
        reporter: Reporter | None = None,
        session_factory: Callable[[], object] | None = None,
        client=None,
        show_progress: bool = True,
    ):
        self.settings = settings
        self.reporter = reporter or Reporter()
        self.file_manager = FileManager(settings.download_path)
        self.session_factory = session_factory or (
            lambda: BrowserSession(self.settings, self.reporter)
        )
        self.client = client
        self.show_progress = show_progress
        self.state = CourseState.INIT
        self.history: list[CourseState] = [CourseState.INIT]

    def _advance(self, state: CourseState) -> None:
        self.state = state
        self.history.append(state)
        self.reporter.debug("course.state", f"Course state: {state.value}", state=state.value)

    async def download(self, course_url: str, website: str | None = None) -> CourseResult:
        website = website or website_name(course_url)
        profile = self.settings.profile_for(website)

        self.reporter.info("course.start", f"Starting download from {website}", website=website)
        self.reporter.info("course.url", f"URL: {course_url}", url=course_url)

        session = self.session_factory()
        try:
            await session.initialize()
            if not await session.navigate_to(course_url, is_auth_flow=profile.requires_auth):
                raise NavigationFailure(f"Failed to navigate to course URL: {course_url}")
            self._advance(CourseState.NAVIGATED)

            if profile.requires_auth:
                await session.wait_for_auth()
                self._advance(CourseState.AUTHENTICATED)

            return await self._run(session, course_url, website, profile)
        except Exception as e:
            self._advance(CourseState.ABORTED)
            self.reporter.error("course.aborted", f"Download failed: {e}", exception=e)
            raise
        finally:
            await session.close()

    async def _run(
        self, session, course_url: str, website: str, profile: WebsiteProfile
    ) -> CourseResult:
        extractor = SelectorExtractor(session, profile.selectors, self.reporter)

        self.reporter.info("course.extract", "Extracting course information...")
        course_title = await extractor.get_course_title()
        self.reporter.success("course.title", f"Course: {course_title}", title=course_title)
        self._advance(CourseState.TITLE_EXTRACTED)

        course_path = self.file_manager.create_course_structure(course_title, website)
        self.reporter.success(
            "course.structure", f"Created course directory: {course_path}", path=str(course_path)
        )
        self._advance(CourseState.STRUCTURE_CREATED)

        runner = LessonRunner(
            session,
            self.settings,
            profile,
            course_path,
            self.file_manager,
            self.reporter,
            client=self.client,
            show_progress=self.show_progress,
        )

        lessons = await extractor.extract_lessons()
        implicit = not lessons
        if implicit:
            self.reporter.info("course.single_page", "Processing single page course...")
            lessons = [LessonReference(index=0, url=course_url, title=course_title)]
        else:
            self.reporter.info("course.lessons", f"Found {len(lessons)} lessons", count=len(lessons))

        manifest = CourseManifest(course_title=course_title, course_url=course_url, website=website)
        self._advance(CourseState.LESSONS)

        outcomes: list[LessonOutcome] = []
        for lesson in lessons:
            self.reporter.info(
                "lesson.start",
                f"Processing lesson {lesson.index + 1}/{len(lessons)}: {lesson.title}",
                lesson=lesson.index,
            )
            outcome = await runner.run(lesson, implicit=implicit)
            record(manifest, outcome)
            outcomes.append(outcome)

        self.file_manager.write_manifest(course_path, manifest)
        self._advance(CourseState.MANIFEST_WRITTEN)

        runner.materializer.create_index_page(course_path, manifest)
        self._advance(CourseState.INDEX_GENERATED)

        self.reporter.success("course.done", "Download completed successfully!")
        self.reporter.info(
            "course.summary",
            f"Videos: {len(manifest.videos)} | Documents: {len(manifest.documents)} | "
            f"Lessons: {len(manifest.lessons)}",
            videos=len(manifest.videos),
            documents=len(manifest.documents),
            lessons=len(manifest.lessons),
            failed=sum(outcome.failed for outcome in outcomes),
            path=str(course_path),
        )
        self._advance(CourseState.DONE)

        return CourseResult(True, course_path, manifest, outcomes, list(self.history))


def record(manifest: CourseManifest, outcome: LessonOutcome) -> None:
    """Append a finished lesson and whatever it produced; earlier entries are never touched."""
    lesson = outcome.lesson
    manifest.lessons.append(
        ManifestLesson(
            index=lesson.index,
            title=lesson.title,
            url=lesson.url,
            html_path=outcome.html_path,
            status=LessonStatus.FAILED if outcome.failed else LessonStatus.COMPLETE,
        )
    )
    if outcome.video is not None:
        manifest.videos.append(outcome.video)
    manifest.documents.extend(outcome.documents)
