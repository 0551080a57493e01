import asyncio
import os
import re
import shutil
from collections import deque
from pathlib import Path
from typing import Awaitable, Callable, Iterable, TypeVar

import aiofiles
import rnet

from .capture import classify_stream
from .errors import DownloadFailure, TranscoderMissing, UnsupportedSource
from .file_manager import format_bytes
from .helpers import retry
from .logger import Reporter
from .models import DownloadResult, DownloadStatus, Settings, StreamKind, VideoSource
from .utils import ProgressCallback, is_blob

T = TypeVar("T")
HeadersProvider = Callable[[str], Awaitable[dict[str, str]]]

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


def part_path(dest: Path) -> Path:
    """Temporary sibling used while a download is in flight; keeps the extension for ffmpeg."""
    return dest.with_name(f"{dest.stem}.part{dest.suffix}")


def build_remux_command(
    ffmpeg: str,
    url: str,
    output: Path,
    kind: StreamKind = StreamKind.HLS,
    headers: dict[str, str] | None = None,
) -> list[str]:
    """
    FFmpeg arguments that copy a segmented stream into one file without re-encoding.

    Progress is written as ``key=value`` lines to stdout (``-progress pipe:1``);
    the banner on stderr still carries the input ``Duration``.
    """
    cmd = [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-nostats",
        "-y",
        "-progress", "pipe:1",
        "-protocol_whitelist", "file,http,https,tcp,tls,crypto",
    ]
    if kind is StreamKind.HLS:
        cmd += ["-allowed_extensions", "ALL"]
    if headers:
        cmd += ["-headers", "".join(f"{key}: {value}\r\n" for key, value in headers.items())]
    cmd += ["-i", url, "-c", "copy"]
    if kind is StreamKind.HLS:
        # MPEG-TS carries ADTS audio; MP4 needs raw AAC
        cmd += ["-bsf:a", "aac_adtstoasc"]
    cmd.append(str(output))
    return cmd


def parse_duration(line: str) -> float | None:
    match = DURATION_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class DownloadPool:
    """
    Runs asset download jobs one after another, or through a bounded set of
    workers when the ``pooled`` policy is configured. Results keep job order.
    """

    def __init__(self, policy: str = "sequential", max_workers: int = 3):
        self.policy = policy
        self.max_workers = max_workers

    @classmethod
    def from_settings(cls, settings: Settings) -> "DownloadPool":
        return cls(settings.download_policy, settings.max_concurrent_downloads)

    async def run(self, jobs: Iterable[Callable[[], Awaitable[T]]]) -> list[T]:
        jobs = list(jobs)
        if self.policy == "sequential" or self.max_workers <= 1:
            return [await job() for job in jobs]

        semaphore = asyncio.Semaphore(self.max_workers)

        async def guarded(job):
            async with semaphore:
                return await job()

        return list(await asyncio.gather(*(guarded(job) for job in jobs)))


class DownloadEngine:
    """
    Fetches assets to disk.

    A destination that already exists is never fetched again. ``blob:`` URLs
    come back as ``UNSUPPORTED`` without touching the network. Failures are
    reported and returned as ``FAILED`` results; nothing is raised past the
    public methods.
    """

    def __init__(
        self,
        settings: Settings,
        reporter: Reporter | None = None,
        client=None,
        headers_provider: HeadersProvider | None = None,
    ):
        self.settings = settings
        self.reporter = reporter or Reporter()
        self.client = client or rnet.Client(
            impersonate=rnet.Impersonate.Firefox139,
            timeout=max(1, settings.timeout // 1000),
        )
        self.headers_provider = headers_provider
        self.ffmpeg = shutil.which("ffmpeg")

    async def _headers(self, url: str) -> dict[str, str]:
        if self.headers_provider is None:
            return {"User-Agent": self.settings.user_agent}
        return await self.headers_provider(url)

    def _unsupported(self, url: str) -> DownloadResult:
        error = UnsupportedSource(url)
        self.reporter.warning("download.unsupported", str(error), url=url)
        return DownloadResult(DownloadStatus.UNSUPPORTED, error=str(error))

    def _skipped(self, dest: Path) -> DownloadResult:
        self.reporter.info("download.skipped", f"Already exists: {dest.name}", path=str(dest))
        return DownloadResult(DownloadStatus.SKIPPED, dest)

    def _failed(self, url: str, dest: Path, error: Exception) -> DownloadResult:
        self.reporter.warning(
            "download.failed", f"Failed to download {dest.name}: {error}", url=url, path=str(dest)
        )
        return DownloadResult(DownloadStatus.FAILED, error=str(error))

    async def download_asset(
        self, url: str, dest: str | Path, progress_cb: ProgressCallback | None = None
    ) -> DownloadResult:
        dest = Path(dest)
        if is_blob(url):
            return self._unsupported(url)
        if dest.exists():
            return self._skipped(dest)

        fetch = retry(
            attempts=self.settings.retry_attempts,
            delay=self.settings.retry_delay,
            exceptions=(DownloadFailure,),
        )(self._fetch)
        try:
            await fetch(url, dest, progress_cb)
        except DownloadFailure as e:
            return self._failed(url, dest, e)

        self.reporter.success(
            "download.complete",
            f"Downloaded: {dest.name} ({format_bytes(dest.stat().st_size)})",
            url=url,
            path=str(dest),
        )
        return DownloadResult(DownloadStatus.DOWNLOADED, dest)

    async def _fetch(self, url: str, dest: Path, progress_cb: ProgressCallback | None) -> None:
        tmp = part_path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        response = None
        try:
            headers = await self._headers(url)
            response = await self.client.get(url, allow_redirects=True, headers=headers)
            if not response.ok:
                raise DownloadFailure(f"[Bad Response: {response.status}]")

            total = response.content_length or 0
            downloaded = 0
            async with aiofiles.open(tmp, "wb") as file:
                async with response.stream() as streamer:
                    async for chunk in streamer:
                        await file.write(chunk)
                        downloaded += len(chunk)
                        if progress_cb and total:
                            percent = min(100, round(downloaded * 100 / total))
                            progress_cb(percent, downloaded, total)
            os.replace(tmp, dest)
        except DownloadFailure:
            raise
        except Exception as e:
            raise DownloadFailure(f"Stream error: {e}") from e
        finally:
            tmp.unlink(missing_ok=True)
            if response is not None:
                await response.close()

    async def download_hls(
        self,
        url: str,
        dest: str | Path,
        progress_cb: ProgressCallback | None = None,
        kind: StreamKind = StreamKind.HLS,
    ) -> DownloadResult:
        """Remux an HLS (or DASH) stream into ``dest`` with ffmpeg stream copy."""
        dest = Path(dest)
        if is_blob(url):
            return self._unsupported(url)
        if dest.exists():
            return self._skipped(dest)
        if not self.ffmpeg:
            return self._failed(url, dest, TranscoderMissing("FFmpeg is required but not found in PATH"))

        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = part_path(dest)
        try:
            headers = await self._headers(url)
        except Exception as e:
            return self._failed(url, dest, DownloadFailure(f"Could not build request headers: {e}"))
        cmd = build_remux_command(self.ffmpeg, url, tmp, kind, headers)
        self.reporter.debug("download.ffmpeg", f"FFmpeg command: {' '.join(cmd)}")

        transcode = retry(
            attempts=self.settings.transcode_attempts,
            delay=self.settings.retry_delay,
            exceptions=(DownloadFailure,),
        )(self._transcode)
        try:
            await transcode(cmd, tmp, dest, progress_cb)
        except DownloadFailure as e:
            return self._failed(url, dest, e)

        self.reporter.success(
            "download.complete",
            f"Downloaded {kind.value.upper()} stream: {dest.name}",
            url=url,
            path=str(dest),
        )
        return DownloadResult(DownloadStatus.DOWNLOADED, dest)

    async def _transcode(
        self, cmd: list[str], tmp: Path, dest: Path, progress_cb: ProgressCallback | None
    ) -> None:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        duration: float | None = None
        tail: deque[str] = deque(maxlen=20)

        async def read_log():
            nonlocal duration
            async for raw in process.stderr:
                line = raw.decode(errors="replace").strip()
                if line:
                    tail.append(line)
                if duration is None:
                    duration = parse_duration(line)

        async def read_progress():
            async for raw in process.stdout:
                key, _, value = raw.decode(errors="replace").strip().partition("=")
                if not progress_cb:
                    continue
                # out_time_ms is in microseconds too
                if key in ("out_time_us", "out_time_ms") and value.isdigit() and duration:
                    percent = min(100, round(int(value) / 1_000_000 * 100 / duration))
                    progress_cb(percent, 0, 100)
                elif key == "progress" and value == "end":
                    progress_cb(100, 0, 100)

        timeout = self.settings.transcode_timeout / 1000
        try:
            await asyncio.wait_for(
                asyncio.gather(read_log(), read_progress(), process.wait()),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            tmp.unlink(missing_ok=True)
            raise DownloadFailure(f"ffmpeg timed out after {timeout:.0f}s")

        if process.returncode != 0:
            tmp.unlink(missing_ok=True)
            detail = tail[-1] if tail else "Unknown error"
            raise DownloadFailure(f"ffmpeg exited with code {process.returncode}: {detail}")
        os.replace(tmp, dest)

    async def download_video(
        self,
        source: VideoSource,
        dest: str | Path,
        progress_cb: ProgressCallback | None = None,
    ) -> DownloadResult:
        """Route a video to the remux path (HLS/DASH) or the byte-stream path (direct files)."""
        if source.is_blob:
            return self._unsupported(source.url)

        kind = classify_stream(source.url)
        if kind is None or kind is StreamKind.DIRECT:
            kind = source.stream_kind

        if kind.is_segmented:
            return await self.download_hls(source.url, dest, progress_cb, kind=kind)
        return await self.download_asset(source.url, dest, progress_cb)
