"""Logging configuration using structlog."""

import logging
import re
import sys
import uuid
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from structlog.typing import EventDict, WrappedLogger

import structlog
from rich.console import Console

BoundLogger = structlog.stdlib.BoundLogger


class SafeStreamHandler(logging.StreamHandler):
    """A StreamHandler that replaces characters the console cannot encode."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = self.stream
            encoding = getattr(stream, "encoding", None) or "utf-8"
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                safe_msg = msg.encode(encoding, errors="replace").decode(encoding, errors="replace")
                stream.write(safe_msg + self.terminator)
            self.flush()
        except RecursionError:
            raise
        except Exception:
            self.handleError(record)


_console: Console | None = None
_log_output: TextIO = sys.stderr

# Google API keys look like "AIza" followed by 35 url-safe characters
_API_KEY_PATTERN = re.compile(r"AIza[0-9A-Za-z_\-]{35}")

# Values longer than this are cut (prompts and raw model replies)
_MAX_VALUE_LENGTH = 500

_NOISY_LOGGERS = [
    "httpcore",
    "httpx",
    "urllib3",
    "asyncio",
    "google.genai",
    "google_genai",
    "google.auth",
    "grpc",
]

_INTERNAL_KEYS = {"event", "level", "timestamp", "_record", "_from_structlog"}


def get_console() -> Console:
    """Get the global Rich console for coordinated output."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def set_log_output(output: TextIO) -> None:
    """Set the log output stream (for Progress console coordination)."""
    global _log_output
    _log_output = output


def _redact_api_keys(
    _logger: "WrappedLogger", _method_name: str, event_dict: "EventDict"
) -> "EventDict":
    """Mask anything that looks like a raw API key."""
    for key, value in list(event_dict.items()):
        if isinstance(value, str) and _API_KEY_PATTERN.search(value):
            event_dict[key] = _API_KEY_PATTERN.sub(lambda m: m.group(0)[:8] + "***", value)
    return event_dict


def _truncate_long_values(
    _logger: "WrappedLogger", _method_name: str, event_dict: "EventDict"
) -> "EventDict":
    for key, value in list(event_dict.items()):
        if key == "event":
            continue
        if isinstance(value, str) and len(value) > _MAX_VALUE_LENGTH:
            event_dict[key] = value[:_MAX_VALUE_LENGTH] + f"... [{len(value)} chars total]"
    return event_dict


def _add_separator(
    _logger: "WrappedLogger", _method_name: str, event_dict: "EventDict"
) -> "EventDict":
    """Separate the event message from its context variables."""
    if "event" in event_dict and any(k not in _INTERNAL_KEYS for k in event_dict):
        event_dict["event"] = f"{event_dict['event']} |"
    return event_dict


def _build_formatter(
    shared_processors: list[structlog.types.Processor], json_format: bool, colors: bool
) -> structlog.stdlib.ProcessorFormatter:
    if json_format:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=colors,
            exception_formatter=structlog.dev.plain_traceback,
            pad_event_to=0,
            pad_level=False,
        )
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_format: bool = False,
    console: Console | None = None,
    console_level: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structlog for the application.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; rotated daily with 7 days of history
        json_format: If True, render JSON instead of console lines
        console: Optional Rich Console for coordinated output with Progress
        console_level: Optional override for console handler level
        file_level: Optional override for file handler level
    """
    global _console

    log_level = getattr(logging, level.upper(), logging.INFO)

    if console is not None:
        _console = console

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    # Third-party loggers only show WARNING+ unless debugging
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_api_keys,
        _truncate_long_values,
        _add_separator,
    ]

    console_handler = SafeStreamHandler(_log_output)
    console_handler.setLevel(
        getattr(logging, console_level.upper(), log_level) if console_level else log_level
    )
    console_handler.setFormatter(_build_formatter(shared_processors, json_format, colors=True))
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(
            getattr(logging, file_level.upper(), log_level) if file_level else log_level
        )
        file_handler.setFormatter(_build_formatter(shared_processors, json_format, colors=False))
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name

    Returns:
        A structlog bound logger
    """
    return structlog.get_logger(name)


def generate_request_id() -> str:
    """Generate a short id used to correlate the log lines of one LLM request."""
    return str(uuid.uuid4())[:8]


def create_task_log_path(log_dir: str | Path, prefix: str = "task") -> tuple[str, Path]:
    """Create a unique task log file path with timestamp and short id.

    Args:
        log_dir: Directory to store log files
        prefix: Prefix for the log file name (e.g., "filter", "draft")

    Returns:
        Tuple of (task_id, log_file_path)

    Example:
        >>> task_id, log_path = create_task_log_path(".logs", "filter")
        >>> print(log_path)  # .logs/filter_20260109_143052_a1b2c3d4.log
    """
    log_dir_path = Path(log_dir)
    log_dir_path.mkdir(parents=True, exist_ok=True)

    task_id = generate_request_id()
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return task_id, log_dir_path / f"{prefix}_{timestamp}_{task_id}.log"


def setup_task_logging(
    log_dir: str | Path,
    prefix: str = "task",
    verbose: bool = False,
) -> tuple[str, Path]:
    """Setup logging for one CLI task.

    The console only shows WARNING+ unless verbose, so progress bars stay
    readable. The task file always receives DEBUG.

    Args:
        log_dir: Directory to store log files
        prefix: Prefix for the log file name
        verbose: Enable verbose console output

    Returns:
        Tuple of (task_id, log_file_path)
    """
    task_id, log_path = create_task_log_path(log_dir, prefix)
    setup_logging(
        level="DEBUG",
        log_file=str(log_path),
        console_level="DEBUG" if verbose else "WARNING",
        file_level="DEBUG",
    )
    return task_id, log_path
