from datetime import datetime
from functools import partial
from html import escape
from pathlib import Path
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .constants import DOCUMENT_EXTENSIONS, INDEX_FILE
from .downloader import DownloadEngine, DownloadPool
from .file_manager import FileManager, NameRegistry, sanitize_filename
from .logger import Reporter
from .models import CourseManifest, LessonStatus
from .utils import basename_from_url, is_absolute_http

IMAGES_JS = """
() => Array.from(document.querySelectorAll('img'))
    .map((img) => img.getAttribute('src') || '')
    .filter((src) => src.startsWith('http://') || src.startsWith('https://'))
"""

OFFLINE_STYLE = """
body {
  max-width: 1200px;
  margin: 0 auto;
  padding: 20px;
}
.offline-banner {
  background: #4CAF50;
  color: white;
  padding: 10px;
  text-align: center;
  margin-bottom: 20px;
}
"""

OFFLINE_BANNER = "Offline Mode - Downloaded Content"

INDEX_STYLE = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; color: #333; }
.header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 2rem; text-align: center; }
.container { max-width: 1200px; margin: 0 auto; padding: 2rem; }
.stats { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 1rem; margin-bottom: 2rem; }
.stat-card { background: white; padding: 1.5rem; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); text-align: center; }
.stat-card h3 { color: #667eea; font-size: 2rem; margin-bottom: 0.5rem; }
.section { background: white; padding: 2rem; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); margin-bottom: 2rem; }
.section h2 { color: #667eea; margin-bottom: 1rem; padding-bottom: 0.5rem; border-bottom: 2px solid #667eea; }
.lesson-list { list-style: none; }
.lesson-item { padding: 1rem; border-bottom: 1px solid #eee; display: flex; align-items: center; }
.lesson-number { background: #667eea; color: white; width: 30px; height: 30px; border-radius: 50%; display: flex; align-items: center; justify-content: center; margin-right: 1rem; font-weight: bold; }
.lesson-failed { color: #c0392b; margin-left: 0.5rem; font-size: 0.85rem; }
.doc-list { display: grid; grid-template-columns: repeat(auto-fill, minmax(250px, 1fr)); gap: 1rem; }
.doc-card { background: #f9f9f9; padding: 1rem; border-radius: 8px; text-align: center; }
a { color: #667eea; text-decoration: none; }
.footer { text-align: center; padding: 2rem; color: #666; }
"""


def image_filename(url: str, position: int) -> str:
    """Local name for an image: its URL basename, or ``image_<position>.jpg`` when it has none."""
    name = basename_from_url(url).strip()
    return sanitize_filename(name) if name else f"image_{position}.jpg"


def _lesson_item(lesson) -> str:
    title = escape(lesson.title)
    if lesson.html_path:
        title = f'<a href="{escape(lesson.html_path)}">{title}</a>'
    failed = '<span class="lesson-failed">(incomplete)</span>' if lesson.status == LessonStatus.FAILED else ""
    return (
        f'<li class="lesson-item"><span class="lesson-number">{lesson.index + 1}</span>'
        f"{title}{failed}</li>"
    )


def is_document_url(url: str) -> bool:
    return basename_from_url(url).lower().endswith(DOCUMENT_EXTENSIONS)


class HtmlMaterializer:
    def __init__(
        self,
        engine: DownloadEngine,
        file_manager: FileManager,
        pool: DownloadPool | None = None,
        reporter: Reporter | None = None,
        document_names: NameRegistry | None = None,
        image_names: NameRegistry | None = None,
    ):
        self.engine = engine
        self.file_manager = file_manager
        self.pool = pool or DownloadPool()
        self.reporter = reporter or Reporter()
        self.document_names = document_names or NameRegistry()
        self.image_names = image_names or NameRegistry()

    def rewrite(self, html: str, base_url: str, video_filename: str | None = None) -> str:
        """
        Point captured markup at the local course tree.

        Videos go to ``../videos/``, document links to ``../documents/`` and
        absolute images to ``../images/``. A ``<base>`` tag keeps every other
        relative reference resolving against ``base_url``. When
        ``video_filename`` is given, video sources use it instead of their
        URL basename.

        Document and image names come from the same registries the downloads
        use, so two different URLs sharing a basename never point at one file.
        """
        soup = BeautifulSoup(html, "html.parser")

        for tag in soup.select("video[src], video source[src]"):
            name = video_filename or sanitize_filename(basename_from_url(tag["src"]))
            tag["src"] = f"../videos/{name}"

        for tag in soup.select("a[href]"):
            url = urljoin(base_url, tag["href"])
            if is_document_url(url):
                name = self.document_names.claim(url, basename_from_url(url))
                tag["href"] = f"../documents/{name}"

        position = 0
        for tag in soup.select("img[src]"):
            src = tag["src"]
            if is_absolute_http(src):
                name = self.image_names.claim(src, image_filename(src, position))
                tag["src"] = f"../images/{name}"
                position += 1

        head = soup.head
        if head is None:
            head = soup.new_tag("head")
            if soup.html is not None:
                soup.html.insert(0, head)
            else:
                soup.insert(0, head)
        head.insert(0, soup.new_tag("base", href=base_url))
        style = soup.new_tag("style")
        style.string = OFFLINE_STYLE
        head.append(style)

        body = soup.body
        if body is None:
            body = soup.new_tag("body")
            (soup.html if soup.html is not None else soup).append(body)
        banner = soup.new_tag("div", attrs={"class": "offline-banner"})
        banner.string = OFFLINE_BANNER
        body.insert(0, banner)

        return str(soup)

    async def save_page(
        self,
        session,
        html_dir: Path,
        title: str,
        video_filename: str | None = None,
    ) -> Path:
        html = await session.content()
        processed = self.rewrite(html, session.url, video_filename)
        path = html_dir / f"{sanitize_filename(title)}.html"
        self.file_manager.save_text(path, processed)
        self.reporter.success("html.saved", f"Saved HTML: {path.name}", path=str(path))
        return path

    async def download_images(self, session, course_dir: Path) -> int:
        """
        Fetch every absolute image on the live page into ``<course>/images``.

        Files already on disk are skipped and a failing image never stops the
        batch. Returns the number of image URLs found.
        """
        images_dir = self.file_manager.ensure_dir(course_dir / "images")
        try:
            urls = await session.evaluate(IMAGES_JS) or []
        except Exception as e:
            self.reporter.warning("images.failed", f"Failed to collect images: {e}")
            return 0

        self.reporter.info("images.found", f"Found {len(urls)} images to download", count=len(urls))

        jobs = []
        seen: set[str] = set()
        for position, url in enumerate(urls):
            if url in seen:
                continue
            seen.add(url)
            dest = images_dir / self.image_names.claim(url, image_filename(url, position))
            jobs.append(partial(self.engine.download_asset, url, dest))
        await self.pool.run(jobs)
        return len(urls)

    def create_index_page(self, course_dir: Path, manifest: CourseManifest) -> Path:
        lessons = "".join(_lesson_item(lesson) for lesson in manifest.lessons)
        videos = "".join(
            f'<li class="lesson-item"><a href="{escape(video.path)}">{escape(video.title)}</a></li>'
            for video in manifest.videos
        )
        documents = "".join(
            f'<div class="doc-card"><a href="{escape(doc.path)}">{escape(doc.filename)}</a></div>'
            for doc in manifest.documents
        )
        try:
            downloaded = datetime.fromisoformat(manifest.download_date).strftime("%Y-%m-%d")
        except ValueError:
            downloaded = manifest.download_date

        sections = []
        if manifest.lessons:
            sections.append(f'<div class="section"><h2>Course Lessons</h2><ul class="lesson-list">{lessons}</ul></div>')
        if manifest.videos:
            sections.append(f'<div class="section"><h2>Videos</h2><ul class="lesson-list">{videos}</ul></div>')
        if manifest.documents:
            sections.append(f'<div class="section"><h2>Course Documents</h2><div class="doc-list">{documents}</div></div>')

        title = escape(manifest.course_title)
        html = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title} - Offline Course</title>
  <style>{INDEX_STYLE}</style>
</head>
<body>
  <div class="header">
    <h1>{title}</h1>
    <p>Offline Course Material - Downloaded on {escape(downloaded)}</p>
  </div>
  <div class="container">
    <div class="stats">
      <div class="stat-card"><h3>{len(manifest.lessons)}</h3><p>Lessons</p></div>
      <div class="stat-card"><h3>{len(manifest.videos)}</h3><p>Videos</p></div>
      <div class="stat-card"><h3>{len(manifest.documents)}</h3><p>Documents</p></div>
    </div>
    {"".join(sections)}
  </div>
  <div class="footer"><p>Offline Course Viewer</p></div>
</body>
</html>
"""
        path = self.file_manager.save_text(course_dir / INDEX_FILE, html)
        self.reporter.success("index.created", "Created index page", path=str(path))
        return path
