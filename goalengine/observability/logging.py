"""
Logger

Structured logging implementation.

Design decisions:
- Named loggers share one set of class-level handlers
- Event-style messages ("agent.plan.fallback") with key/value data
- Context variables enrich every record emitted inside a run
- Text output for humans, JSON output for machines
"""

import contextvars
import json
import sys
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Iterator, TextIO


class LogLevel(IntEnum):
    """Log levels matching Python's logging module."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


@dataclass
class LogEntry:
    """A structured log entry."""

    level: LogLevel = LogLevel.INFO
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    logger_name: str = ""

    # Structured data
    data: dict[str, Any] = field(default_factory=dict)

    # Error info
    error: str | None = None
    stack_trace: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        entry = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.name,
            "message": self.message,
            "logger": self.logger_name,
        }

        if self.data:
            entry["data"] = self.data
        if self.error:
            entry["error"] = self.error
        if self.stack_trace:
            entry["stack_trace"] = self.stack_trace

        return entry

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class LogHandler:
    """Base log handler."""

    def __init__(self, level: LogLevel = LogLevel.DEBUG):
        self.level = level

    def should_handle(self, level: LogLevel) -> bool:
        return level >= self.level

    def handle(self, entry: LogEntry) -> None:
        """Handle a log entry."""
        raise NotImplementedError


class ConsoleHandler(LogHandler):
    """Console log handler."""

    def __init__(
        self,
        stream: TextIO | None = None,
        format: str = "text",  # text, json
        level: LogLevel = LogLevel.DEBUG,
    ):
        super().__init__(level)
        self._stream = stream or sys.stderr
        self._format = format

    def handle(self, entry: LogEntry) -> None:
        """Write log entry to console."""
        if not self.should_handle(entry.level):
            return

        if self._format == "json":
            line = entry.to_json()
        else:
            line = self._format_text(entry)

        self._stream.write(line + "\n")
        self._stream.flush()

    def _format_text(self, entry: LogEntry) -> str:
        timestamp = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        line = f"{timestamp} {entry.level.name:8s} [{entry.logger_name}] {entry.message}"

        if entry.data:
            pairs = " ".join(f"{k}={v}" for k, v in entry.data.items())
            line += f" | {pairs}"

        if entry.error:
            line += f" | ERROR: {entry.error}"

        return line


class FileHandler(LogHandler):
    """Appends JSON lines to a file."""

    def __init__(self, filepath: str, level: LogLevel = LogLevel.DEBUG):
        super().__init__(level)
        self._filepath = filepath
        self._file: TextIO | None = None

    def handle(self, entry: LogEntry) -> None:
        if not self.should_handle(entry.level):
            return

        if self._file is None:
            self._file = open(self._filepath, "a", encoding="utf-8")

        self._file.write(entry.to_json() + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None


class MemoryHandler(LogHandler):
    """Buffers entries in memory for tests and inspection."""

    def __init__(self, level: LogLevel = LogLevel.DEBUG, max_entries: int = 1000):
        super().__init__(level)
        self.entries: list[LogEntry] = []
        self._max_entries = max_entries

    def handle(self, entry: LogEntry) -> None:
        if not self.should_handle(entry.level):
            return

        self.entries.append(entry)
        if len(self.entries) > self._max_entries:
            self.entries = self.entries[-self._max_entries :]

    def messages(self, level: LogLevel | None = None) -> list[str]:
        """Messages recorded, optionally filtered to one level."""
        return [e.message for e in self.entries if level is None or e.level == level]

    def clear(self) -> None:
        self.entries.clear()


# Context variables for log enrichment
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


class Logger:
    """
    Structured logger.

    Provides structured logging with context propagation.
    """

    _loggers: dict[str, "Logger"] = {}
    _root_level: LogLevel = LogLevel.INFO
    _handlers: list[LogHandler] = [ConsoleHandler()]

    def __init__(self, name: str):
        self._name = name
        self._level: LogLevel | None = None
        self._context: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._name

    @classmethod
    def get_logger(cls, name: str) -> "Logger":
        """Get or create a logger."""
        if name not in cls._loggers:
            cls._loggers[name] = cls(name)
        return cls._loggers[name]

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        handlers: list[LogHandler] | None = None,
    ) -> None:
        """Configure root level and handlers."""
        cls._root_level = level
        if handlers is not None:
            cls._handlers = list(handlers)

    @classmethod
    def add_handler(cls, handler: LogHandler) -> None:
        cls._handlers.append(handler)

    @classmethod
    def remove_handler(cls, handler: LogHandler) -> None:
        if handler in cls._handlers:
            cls._handlers.remove(handler)

    def set_level(self, level: LogLevel) -> None:
        self._level = level

    def with_context(self, **kwargs: Any) -> "Logger":
        """Create a child logger with additional context."""
        child = Logger(self._name)
        child._level = self._level
        child._context = {**self._context, **kwargs}
        return child

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, error: BaseException | None = None, **kwargs: Any) -> None:
        """Log error message, with the exception's type and traceback when given."""
        error_str = None
        stack_trace = None

        if error is not None:
            error_str = f"{type(error).__name__}: {error}"
            if error.__traceback__ is not None:
                stack_trace = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )

        self._log(LogLevel.ERROR, message, error=error_str, stack_trace=stack_trace, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.CRITICAL, message, **kwargs)

    @staticmethod
    @contextmanager
    def context(**kwargs: Any) -> Iterator[None]:
        """
        Add context to every entry logged inside the block.

        Usage:
            with Logger.context(goal_id="goal-1"):
                logger.info("agent.execute.start")
        """
        token = _log_context.set({**_log_context.get(), **kwargs})
        try:
            yield
        finally:
            _log_context.reset(token)

    def _log(
        self,
        level: LogLevel,
        message: str,
        error: str | None = None,
        stack_trace: str | None = None,
        **kwargs: Any,
    ) -> None:
        effective_level = self._level or self._root_level
        if level < effective_level:
            return

        entry = LogEntry(
            level=level,
            message=message,
            logger_name=self._name,
            data={**_log_context.get(), **self._context, **kwargs},
            error=error,
            stack_trace=stack_trace,
        )

        for handler in self._handlers:
            try:
                handler.handle(entry)
            except Exception as exc:  # logging must not break the engine
                print(f"log handler {type(handler).__name__} failed: {exc}", file=sys.stderr)


# Module-level convenience functions
def get_logger(name: str) -> Logger:
    """Get a logger."""
    return Logger.get_logger(name)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    format: str = "text",
    log_file: str | None = None,
) -> None:
    """Configure console (and optional file) logging for every logger."""
    if isinstance(level, str):
        level = LogLevel[level.upper()]

    handlers: list[LogHandler] = [ConsoleHandler(format=format, level=level)]
    if log_file:
        handlers.append(FileHandler(log_file, level=level))

    Logger.configure(level=level, handlers=handlers)


def configure_from_settings(settings: Any) -> None:
    """Apply a LoggingSettings instance."""
    configure_logging(level=settings.level, format=settings.format)
