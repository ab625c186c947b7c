from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings

ROOT_LOGGER_NAME = "playlist_autofill"
APP_LOG_FILE_NAME = "playlist-autofill.log"
RUNS_LOG_FILE_NAME = "scheduled-runs.log"
TELEMETRY_LOG_FILE_NAME = "playlist-autofill-telemetry.log"


@dataclass(frozen=True)
class LogRoute:
    """A child logger that also writes to its own JSON-lines file."""

    logger_name: str
    file_name: str
    propagate: bool


LOG_ROUTES: tuple[LogRoute, ...] = (
    # Channel outcomes and playlist inserts, kept apart as an audit trail of runs.
    LogRoute(f"{ROOT_LOGGER_NAME}.pipeline", RUNS_LOG_FILE_NAME, propagate=True),
    LogRoute(f"{ROOT_LOGGER_NAME}.telemetry", TELEMETRY_LOG_FILE_NAME, propagate=False),
)


@dataclass(frozen=True)
class LoggingPaths:
    app_log: Path
    runs_log: Path
    telemetry_log: Path


def configure_application_logging(settings: AppSettings) -> LoggingPaths:
    """
    Console output at `log_level` plus JSON-lines files under `log_dir`.

    The app log receives every `playlist_autofill.*` record except telemetry.
    Pipeline records are also copied to the scheduled-runs log, and telemetry
    events only go to their own file. Calling this again replaces the handlers
    installed by the previous call.
    """
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    _configure_structlog()

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)
    root_logger.propagate = False
    _replace_handlers(
        root_logger,
        _console_handler(_level_from_name(settings.log_level)),
        _json_file_handler(log_dir / APP_LOG_FILE_NAME, logging.DEBUG),
    )

    for route in LOG_ROUTES:
        route_logger = logging.getLogger(route.logger_name)
        route_logger.propagate = route.propagate
        _replace_handlers(route_logger, _json_file_handler(log_dir / route.file_name, logging.INFO))

    paths = LoggingPaths(
        app_log=log_dir / APP_LOG_FILE_NAME,
        runs_log=log_dir / RUNS_LOG_FILE_NAME,
        telemetry_log=log_dir / TELEMETRY_LOG_FILE_NAME,
    )
    root_logger.info(
        "logging configured console_level=%s log_dir=%s",
        settings.log_level.upper(),
        log_dir,
    )
    return paths


def _level_from_name(raw_level: str) -> int:
    return logging.getLevelNamesMapping().get(raw_level.strip().upper(), logging.INFO)


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _replace_handlers(logger: logging.Logger, *handlers: logging.Handler) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)


def _console_handler(level: int) -> logging.Handler:
    stream = sys.stdout
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=stream.isatty()),
            ],
        )
    )
    return handler


def _json_file_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                _add_source_location,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["source"] = f"{record.module}:{record.lineno}"
    return event_dict
