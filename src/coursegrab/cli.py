import asyncio
import json

import typer
from rich.table import Table
from typing_extensions import Annotated

from coursegrab import CourseDownloadOrchestrator, Logger, load_config
from coursegrab.errors import GrabberError

app = typer.Typer(rich_markup_mode="rich")


@app.command()
def download(
    url: Annotated[
        str,
        typer.Argument(
            help="The URL of the course to download",
            show_default=False,
        ),
    ],
    website: Annotated[
        str,
        typer.Option(
            "--website",
            "-s",
            help="Selector profile to use (defaults to the URL's hostname).",
            show_default=False,
        ),
    ] = None,
    output: Annotated[
        str,
        typer.Option(
            "--output",
            "-o",
            help="Directory where courses are stored (overrides downloadPath).",
            show_default=False,
        ),
    ] = None,
    config: Annotated[
        str,
        typer.Option(
            "--config",
            "-c",
            help="Path to config.json.",
            show_default=False,
        ),
    ] = None,
    headless: Annotated[
        bool,
        typer.Option(
            "--headless/--no-headless",
            help="Hide the browser window. Keep it visible for sites that need a manual login.",
            show_default=False,
        ),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            "-d",
            help="Show debug events and full tracebacks.",
            show_default=True,
        ),
    ] = False,
):
    """
    Download a course for offline viewing.

    Arguments:
        url: str - The URL of the course to download.

    Usage:
        coursegrab download <url>
        coursegrab download <url> --website ine.com --output ./courses
        coursegrab download <url> --headless --config ./config.json

    Example:
        coursegrab download https://www.ine.com/courses/intro-to-networking
    """
    Logger.set_debug_mode(debug)
    try:
        asyncio.run(_download(url, website=website, output=output, config=config, headless=headless))
    except GrabberError as e:
        Logger.error(f"Download failed: {e}", exception=e)
        raise typer.Exit(code=1)


@app.command()
def config(
    path: Annotated[
        str,
        typer.Option(
            "--config",
            "-c",
            help="Path to config.json.",
            show_default=False,
        ),
    ] = None,
):
    """
    Print the effective configuration (file values merged over the defaults).

    Usage:
        coursegrab config
        coursegrab config --config ./config.json
    """
    try:
        settings = load_config(path)
    except GrabberError as e:
        Logger.error(str(e))
        raise typer.Exit(code=1)
    typer.echo(json.dumps(settings.model_dump(mode="json", by_alias=True), indent=2))


async def _download(url: str, **kwargs):
    settings = load_config(kwargs.pop("config", None))

    overrides = {}
    if kwargs.get("output"):
        overrides["download_path"] = kwargs["output"]
    if kwargs.get("headless") is not None:
        overrides["headless"] = kwargs["headless"]
    if overrides:
        settings = settings.model_copy(update=overrides)

    orchestrator = CourseDownloadOrchestrator(settings)
    result = await orchestrator.download(url, website=kwargs.get("website"))
    _print_summary(result)


def _print_summary(result):
    manifest = result.manifest
    table = Table(title=manifest.course_title, show_header=False)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Lessons", str(len(manifest.lessons)))
    table.add_row("Failed lessons", str(sum(lesson.failed for lesson in result.lesson_states)))
    table.add_row("Videos", str(len(manifest.videos)))
    table.add_row("Documents", str(len(manifest.documents)))
    table.add_row("Location", str(result.course_path))
    table.add_row("Index", str(result.course_path / "index.html"))
    Logger.console.print(table)
