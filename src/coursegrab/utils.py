from typing import Callable
from urllib.parse import unquote, urlparse

from tqdm import tqdm

ProgressCallback = Callable[[int, int, int], None]


def website_name(url: str) -> str:
    """
    Derive the website key used to look up a selector profile.

    Example
    -------
    >>> website_name("https://www.ine.com/courses/intro")
    "ine.com"
    """
    hostname = urlparse(url).hostname
    if not hostname:
        return "unknown"
    return hostname.removeprefix("www.")


def basename_from_url(url: str) -> str:
    """
    Last path segment of a URL without query string or fragment.

    Example
    -------
    >>> basename_from_url("http://cdn/pic.jpg?v=2")
    "pic.jpg"
    """
    return unquote(urlparse(url).path.rsplit("/", 1)[-1])


def is_blob(url: str | None) -> bool:
    return bool(url) and url.startswith("blob:")


def is_absolute_http(url: str | None) -> bool:
    return bool(url) and url.startswith(("http://", "https://"))


class TqdmProgress:
    """Progress callback rendering a percent tqdm bar."""

    def __init__(self, desc: str):
        self.desc = desc
        self.bar: tqdm | None = None

    def __call__(self, percent: int, downloaded: int, total: int) -> None:
        if self.bar is None:
            self.bar = tqdm(
                desc=self.desc,
                total=100,
                colour="green",
                ascii="░█",
                bar_format="{desc} |{bar}| {n:.0f}% [{elapsed}<{remaining}]",
                leave=False,
            )
        self.bar.n = percent
        self.bar.refresh()

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
