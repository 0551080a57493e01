import sys
import traceback
from typing import Any, NamedTuple

from rich import print
from rich.console import Console
from rich.traceback import Traceback


class Logger:
    show_warnings = True
    is_writing = False
    debug_mode = False
    console = Console()

    @classmethod
    def error(cls, text, exception=None):
        """Log an error message. If debug_mode is enabled and exception is provided, show full traceback."""
        Logger.print(text, "ERROR:", "red")

        if cls.debug_mode and exception is not None:
            cls.debug_exception(exception)

    @classmethod
    def clear(cls):
        sys.stdout.write("\r" + " " * 100 + "\r")

    @classmethod
    def warning(cls, text):
        if cls.show_warnings:
            Logger.print(text, "WARNING:", "yellow")

    @classmethod
    def info(cls, text):
        Logger.print(text, "INFO:", "green")

    @classmethod
    def success(cls, text):
        Logger.print(text, "✓", "bold green")

    @classmethod
    def print(cls, text, head, color="green", end="\n"):
        cls.is_writing = True
        Logger.clear()
        print(f"[{color}]{head} {text}[/{color}]", end=end, flush=True)
        cls.is_writing = False

    @classmethod
    def debug(cls, text):
        """Log a debug message (only shown when debug_mode is enabled)."""
        if cls.debug_mode:
            Logger.print(text, "DEBUG:", "blue")

    @classmethod
    def debug_exception(cls, exception):
        if not cls.debug_mode:
            return
        cls.is_writing = True
        Logger.clear()
        print(f"\n[yellow]Exception Type:[/yellow] [red]{type(exception).__name__}[/red]")
        print(f"[yellow]Exception Message:[/yellow] [red]{exception}[/red]\n")
        try:
            tb = Traceback.from_exception(
                type(exception),
                exception,
                exception.__traceback__,
                show_locals=True,
            )
            cls.console.print(tb)
        except Exception:
            traceback.print_exception(type(exception), exception, exception.__traceback__)
        cls.is_writing = False

    @classmethod
    def set_debug_mode(cls, enabled: bool):
        cls.debug_mode = enabled
        if enabled:
            Logger.info("🐛 Debug mode ENABLED - Detailed error information will be shown")


class Event(NamedTuple):
    level: str
    name: str
    message: str
    fields: dict[str, Any]


class Reporter:
    """
    Leveled event sink handed to every pipeline component.

    Each call records an ``Event`` (so callers can inspect what happened
    without parsing console text) and, when ``echo`` is set, forwards the
    message to the console ``Logger``.
    """

    LEVELS = ("debug", "info", "success", "warning", "error")

    def __init__(self, echo: bool = True):
        self.echo = echo
        self.events: list[Event] = []

    def emit(self, level: str, name: str, message: str, **fields: Any) -> Event:
        if level not in self.LEVELS:
            raise ValueError(f"Unknown level: {level}")
        exception = fields.pop("exception", None)
        event = Event(level, name, message, fields)
        self.events.append(event)
        if self.echo:
            if level == "error":
                Logger.error(message, exception=exception)
            else:
                getattr(Logger, level)(message)
        return event

    def debug(self, name: str, message: str, **fields: Any) -> Event:
        return self.emit("debug", name, message, **fields)

    def info(self, name: str, message: str, **fields: Any) -> Event:
        return self.emit("info", name, message, **fields)

    def success(self, name: str, message: str, **fields: Any) -> Event:
        return self.emit("success", name, message, **fields)

    def warning(self, name: str, message: str, **fields: Any) -> Event:
        return self.emit("warning", name, message, **fields)

    def error(self, name: str, message: str, **fields: Any) -> Event:
        return self.emit("error", name, message, **fields)

    def named(self, name: str) -> list[Event]:
        return [event for event in self.events if event.name == name]

    def at_level(self, level: str) -> list[Event]:
        return [event for event in self.events if event.level == level]
