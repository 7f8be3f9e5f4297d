"""Logging abstraction layer for the track gateway.

Provides dual-format logging (JSON + human-readable). Every line carries the
connection context bound in ``correlation`` (correlation id, connection id,
device id) plus structured context passed through ``extra``.

Loggers are created at import time from the bootstrap ``TRACK_LOG_*`` values;
``configure_logging()`` re-applies the settings of the final ``GatewayEnv``
once the CLI, env file and YAML config have been read.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from typing_extensions import override

from track_gateway.const import (
    TRACK_DEBUG,
    TRACK_LOG_FORMAT,
    TRACK_LOG_HUMAN_OUTPUT,
    TRACK_LOG_JSON_FILE,
)
from track_gateway.correlation import connection_fields, get_correlation_id

__all__ = [
    "GatewayLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
    "set_package_level",
]

PACKAGE_LOGGER = "track_gateway"

# active output settings; replaced by configure_logging()
_settings: dict[str, object] = {
    "level": logging.DEBUG if TRACK_DEBUG else logging.INFO,
    "log_format": TRACK_LOG_FORMAT,
    "json_file": TRACK_LOG_JSON_FILE,
    "human_output": TRACK_LOG_HUMAN_OUTPUT,
}


def _record_context(record: logging.LogRecord) -> dict[str, object]:
    # bound connection fields first; explicit extras win on key clashes
    context: dict[str, object] = dict(connection_fields())
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        context.update(cast("Mapping[str, object]", extra_data))
    return context


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        context = _record_context(record)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter that outputs human-readable logs with correlation IDs."""

    def __init__(self) -> None:
        # Format: timestamp level [module:line] correlation_id > message | k=v ...
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"

        formatted = super().format(record)

        context = _record_context(record)
        if context:
            context_str = " | ".join(f"{k}={v}" for k, v in context.items())
            formatted = f"{formatted} | {context_str}"

        return formatted


def _attach_handlers(
    logger: logging.Logger,
    log_format: str,
    json_file: str | Path | None,
    human_output: str | None,
    level: int,
) -> None:
    if log_format in ("json", "both") and json_file:
        try:
            json_path = Path(json_file)
            json_path.parent.mkdir(parents=True, exist_ok=True)
            json_handler = logging.FileHandler(json_path, mode="a")
            json_handler.setFormatter(JSONFormatter())
            json_handler.setLevel(level)
            logger.addHandler(json_handler)
        except (OSError, PermissionError) as e:
            print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)
    elif log_format == "json":
        # no file configured: JSON lines to stdout
        json_stream = logging.StreamHandler(sys.stdout)
        json_stream.setFormatter(JSONFormatter())
        json_stream.setLevel(level)
        logger.addHandler(json_stream)

    if log_format in ("human", "both"):
        normalized_output = human_output or "stdout"
        if normalized_output == "stdout":
            human_handler = logging.StreamHandler(sys.stdout)
        elif normalized_output == "stderr":
            human_handler = logging.StreamHandler(sys.stderr)
        else:
            try:
                human_path = Path(normalized_output)
                human_path.parent.mkdir(parents=True, exist_ok=True)
                human_handler = logging.FileHandler(human_path, mode="a")
            except (OSError, PermissionError) as e:
                print(f"Warning: Failed to create human log file {human_output}: {e}", file=sys.stderr)
                human_handler = logging.StreamHandler(sys.stdout)

        human_handler.setFormatter(HumanReadableFormatter())
        human_handler.setLevel(level)
        logger.addHandler(human_handler)


class GatewayLogger:
    """Logger wrapper with structured context and dual-format output.

    Structured context goes in ``extra`` as a plain mapping; the formatters
    render it as ``k=v`` pairs (human) or a ``context`` object (JSON).
    """

    def __init__(
        self,
        name: str,
        log_format: str | None = None,
        json_file: str | Path | None = None,
        human_output: str | None = None,
    ) -> None:
        """Initialize GatewayLogger.

        Args:
            name: Logger name (typically module name)
            log_format: Output format - "json", "human", or "both"
            json_file: Path for JSON output file (None to disable file output)
            human_output: "stdout", "stderr", or file path for human-readable output

        Unset arguments take the active settings.
        """
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format or cast("str", _settings["log_format"])

        level = cast("int", _settings["level"])
        self.logger.setLevel(level)

        # Don't add handlers if already configured (avoid duplicates)
        if not self.logger.handlers:
            _attach_handlers(
                self.logger,
                self.log_format,
                json_file or cast("str | None", _settings["json_file"]),
                human_output or cast("str | None", _settings["human_output"]),
                level,
            )

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        extra_payload: Mapping[str, object] | None = None
        if extra:
            extra_payload = {"extra_data": dict(extra)}

        self.logger.log(level, msg, *args, extra=extra_payload)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log exception with traceback and optional structured context."""
        log_extra = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=log_extra)


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> GatewayLogger:
    """Get or create a GatewayLogger instance.

    Args:
        name: Logger name
        log_format: Override default format ("json", "human", or "both")
        json_file: Override default JSON output file
        human_output: Override default human-readable output

    Returns:
        GatewayLogger instance

    """
    return GatewayLogger(name=name, log_format=log_format, json_file=json_file, human_output=human_output)


def _package_loggers(package: str) -> list[logging.Logger]:
    return [
        candidate
        for name, candidate in list(logging.root.manager.loggerDict.items())
        if isinstance(candidate, logging.Logger) and (name == package or name.startswith(f"{package}."))
    ]


def set_package_level(level: int, package: str = PACKAGE_LOGGER) -> None:
    """Apply ``level`` to every already-created logger (and its handlers) under ``package``."""
    for candidate in _package_loggers(package):
        candidate.setLevel(level)
        for handler in candidate.handlers:
            handler.setLevel(level)


def configure_logging(
    *,
    level: int,
    log_format: str,
    json_file: str | Path | None,
    human_output: str | None,
    package: str = PACKAGE_LOGGER,
) -> None:
    """Switch output settings for loggers created so far and from now on.

    Handlers of existing package loggers are closed and rebuilt, so settings
    read after import (env file, YAML config, CLI) take effect everywhere.
    """
    _settings.update(level=level, log_format=log_format, json_file=json_file, human_output=human_output)
    for candidate in _package_loggers(package):
        if not candidate.handlers:
            continue
        for handler in list(candidate.handlers):
            candidate.removeHandler(handler)
            handler.close()
        _attach_handlers(candidate, log_format, json_file, human_output, level)
    set_package_level(level, package)
