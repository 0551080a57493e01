"""
Typed records shared by the pipeline.

Configuration (``Settings``/``WebsiteProfile``) and the on-disk
``CourseManifest`` are validated pydantic models serialized with the
camelCase keys used in ``config.json`` and ``manifest.json``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    DEFAULT_TIMEOUT,
    DOCUMENTS_SELECTOR,
    SCHEMA_VERSION,
    USER_AGENT,
)


class StreamKind(str, Enum):
    DIRECT = "direct"
    HLS = "hls"
    DASH = "dash"

    @property
    def is_segmented(self) -> bool:
        return self in (StreamKind.HLS, StreamKind.DASH)


class Discovery(str, Enum):
    NETWORK = "network"
    DOM = "dom"


class DownloadStatus(Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


class LessonStatus(str, Enum):
    COMPLETE = "complete"
    FAILED = "failed"


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)


# --- Configuration ---------------------------------------------------------


class Selectors(_Record):
    course_title: str = Field("h1", alias="courseTitle")
    video_player: str = Field("video", alias="videoPlayer")
    video_source: str = Field("video source, source", alias="videoSource")
    lesson_list: str = Field("", alias="lessonList")
    documents: str = DOCUMENTS_SELECTOR


class WebsiteProfile(_Record):
    selectors: Selectors = Field(default_factory=Selectors)
    requires_auth: bool = Field(False, alias="requiresAuth")
    wait_for_selector: str | None = Field(None, alias="waitForSelector")


class Settings(_Schema):
    schema_version: int = Field(SCHEMA_VERSION, alias="schemaVersion")
    download_path: str = Field("./downloads", alias="downloadPath")
    max_concurrent_downloads: int = Field(3, ge=1, alias="maxConcurrentDownloads")
    download_policy: Literal["sequential", "pooled"] = Field(
        "sequential", alias="downloadPolicy"
    )
    retry_attempts: int = Field(3, ge=1, alias="retryAttempts")
    retry_delay: float = Field(1.0, ge=0, alias="retryDelay")
    timeout: int = Field(DEFAULT_TIMEOUT, gt=0)
    transcode_timeout: int = Field(3_600_000, gt=0, alias="transcodeTimeout")
    transcode_attempts: int = Field(1, ge=1, alias="transcodeAttempts")
    capture_timeout: int = Field(30000, ge=0, alias="captureTimeout")
    poll_interval: float = Field(0.5, gt=0, alias="pollInterval")
    settle_delay: float = Field(1.0, ge=0, alias="settleDelay")
    headless: bool = False
    user_agent: str = Field(USER_AGENT, alias="userAgent")
    websites: dict[str, WebsiteProfile] = Field(
        default_factory=lambda: {"default": WebsiteProfile()}
    )

    @field_validator("schema_version")
    @classmethod
    def _known_version(cls, value: int) -> int:
        if value > SCHEMA_VERSION:
            raise ValueError(
                f"config schemaVersion {value} is newer than supported ({SCHEMA_VERSION})"
            )
        return value

    @field_validator("websites")
    @classmethod
    def _ensure_default(cls, value: dict[str, WebsiteProfile]) -> dict[str, WebsiteProfile]:
        if "default" not in value:
            value = {**value, "default": WebsiteProfile()}
        return value

    def profile_for(self, website: str) -> WebsiteProfile:
        return self.websites.get(website) or self.websites["default"]


# --- Extraction ------------------------------------------------------------


class LessonReference(_Record):
    index: int
    url: str
    title: str


class VideoSource(_Record):
    url: str
    stream_kind: StreamKind = Field(StreamKind.DIRECT, alias="streamKind")
    discovery: Discovery = Discovery.DOM

    @property
    def is_blob(self) -> bool:
        return self.url.startswith("blob:")


class DomVideo(_Record):
    index: int
    sources: list[VideoSource] = Field(default_factory=list)
    poster: str = ""


class DocumentReference(_Record):
    url: str
    label: str = ""
    filename: str


# --- Manifest --------------------------------------------------------------


class ManifestLesson(_Schema):
    index: int
    title: str
    url: str
    html_path: str | None = Field(None, alias="htmlPath")
    status: LessonStatus = LessonStatus.COMPLETE


class ManifestVideo(_Schema):
    title: str
    path: str
    lesson_index: int = Field(alias="lessonIndex")
    source_url: str = Field(alias="sourceUrl")
    stream_kind: StreamKind = Field(alias="streamKind")
    discovery: Discovery


class ManifestDocument(_Schema):
    filename: str
    path: str
    original_url: str = Field(alias="originalUrl")
    size: int
    lesson_index: int | None = Field(None, alias="lessonIndex")


class CourseManifest(_Schema):
    schema_version: int = Field(SCHEMA_VERSION, alias="schemaVersion")
    course_title: str = Field(alias="courseTitle")
    course_url: str = Field(alias="courseUrl")
    website: str
    download_date: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        alias="downloadDate",
    )
    lessons: list[ManifestLesson] = Field(default_factory=list)
    videos: list[ManifestVideo] = Field(default_factory=list)
    documents: list[ManifestDocument] = Field(default_factory=list)

    @model_validator(mode="after")
    def _videos_reference_lessons(self):
        known = {lesson.index for lesson in self.lessons}
        for video in self.videos:
            if video.lesson_index not in known:
                raise ValueError(
                    f"video {video.path!r} references unknown lesson {video.lesson_index}"
                )
        return self

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# --- Downloads -------------------------------------------------------------


@dataclass
class DownloadResult:
    status: DownloadStatus
    path: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (DownloadStatus.DOWNLOADED, DownloadStatus.SKIPPED)
