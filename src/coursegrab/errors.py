class GrabberError(Exception):
    """Base class for every error raised by coursegrab."""


class ConfigError(GrabberError):
    """The configuration file is missing required structure or has unknown keys."""


class NavigationFailure(GrabberError):
    """The browser could not start or the course page could not be loaded."""


class ExtractionMiss(GrabberError):
    """A selector matched nothing on the page."""


class DownloadFailure(GrabberError):
    """An asset could not be fetched (bad status, stream error, transcode exit)."""


class TranscoderMissing(DownloadFailure):
    """FFmpeg is not available on PATH."""


class UnsupportedSource(GrabberError):
    """The URL is a blob: handle that only exists inside the browser."""

    def __init__(self, url: str):
        super().__init__(f"Unsupported source (blob URL): {url[:80]}")
        self.url = url


class LessonError(GrabberError):
    """A lesson could not be processed; the course continues with the next one."""
