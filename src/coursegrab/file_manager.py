import math
import re
from pathlib import Path

from pydantic import ValidationError

from .constants import COURSE_SUBDIRS, MANIFEST_FILE, MAX_FILENAME_LENGTH
from .errors import GrabberError
from .helpers import read_json, write_json
from .models import CourseManifest

FORBIDDEN_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
RESERVED_NAMES = {"", ".", ".."}


def sanitize_filename(name: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Make a string safe to use as a single path component.

    Strips ``< > : " / \\ | ? *`` and control characters, collapses whitespace
    and truncates to ``max_length`` characters.

    Example
    -------
    >>> sanitize_filename('Intro: "What is <HTML>?"')
    "Intro What is HTML"
    """
    result = FORBIDDEN_CHARS.sub("", name)
    result = re.sub(r"\s+", " ", result).strip()
    result = result[:max_length].rstrip(" .")
    if result in RESERVED_NAMES:
        return "untitled"
    return result


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = min(int(math.log(size, 1024)), len(units) - 1)
    return f"{round(size / 1024**i, 2)} {units[i]}"


class NameRegistry:
    """
    One local filename per URL inside a shared directory, for one course run.

    The first URL to ask for a name gets it; a different URL asking for the
    same name later gets ``<stem>_<n><ext>``. Asking again with a URL that
    already has a name returns that name, whatever filename is passed.
    """

    def __init__(self):
        self._by_url: dict[str, str] = {}
        self._taken: set[str] = set()

    def get(self, url: str) -> str | None:
        return self._by_url.get(url)

    def claim(self, url: str, filename: str) -> str:
        if url in self._by_url:
            return self._by_url[url]

        name = sanitize_filename(filename)
        stem, dot, suffix = name.rpartition(".")
        if not dot or not stem:
            stem, suffix = name, ""
        candidate, n = name, 1
        while candidate in self._taken:
            candidate = f"{stem}_{n}.{suffix}" if suffix else f"{stem}_{n}"
            n += 1
        self._by_url[url] = candidate
        self._taken.add(candidate)
        return candidate


class FileManager:
    """Stateless helpers for the on-disk course tree rooted at ``base_path``."""

    def __init__(self, base_path: str | Path = "./downloads"):
        self.base_path = Path(base_path)

    @staticmethod
    def ensure_dir(path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def course_path(self, course_name: str, website: str) -> Path:
        return self.base_path / sanitize_filename(website) / sanitize_filename(course_name)

    def create_course_structure(self, course_name: str, website: str) -> Path:
        course_path = self.course_path(course_name, website)
        for subdir in COURSE_SUBDIRS:
            self.ensure_dir(course_path / subdir)
        return course_path

    def save_text(self, path: Path, content: str) -> Path:
        self.ensure_dir(path.parent)
        path.write_text(content, encoding="utf-8")
        return path

    @staticmethod
    def file_size(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0

    def write_manifest(self, course_path: Path, manifest: CourseManifest) -> Path:
        manifest_path = course_path / MANIFEST_FILE
        write_json(manifest_path, manifest.to_json())
        return manifest_path

    def read_manifest(self, course_path: Path) -> CourseManifest | None:
        manifest_path = course_path / MANIFEST_FILE
        if not manifest_path.exists():
            return None
        try:
            return CourseManifest.model_validate(read_json(manifest_path))
        except (ValueError, ValidationError) as e:
            raise GrabberError(f"Unreadable manifest {manifest_path}: {e}") from e
