"""
Logging module for the Basecamp to Fizzy migration tool
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

LOGGER_NAME = "basecamp_migrator"

# Module-level flag to track if API debug logging is enabled
_DEBUG_API_ENABLED = False

_STANDARD_RECORD_ATTRS = frozenset(
    (
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "id",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    )
)

_SENSITIVE_KEYS = ("token", "auth", "password", "secret", "key")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including any ``extra`` context fields."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS:
                data[key] = value
        return json.dumps(data, default=str)


class EnhancedFormatter(logging.Formatter):
    """
    Custom formatter that supports both verbose mode (with additional context information)
    and API debug mode (with request/response data)
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        verbose: bool = False,
        include_api_details: bool = False,
    ) -> None:
        if verbose:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(lineno)d] - %(message)s"
        elif not fmt:
            fmt = "%(asctime)s - %(levelname)s - %(message)s"

        super().__init__(fmt, datefmt, style)  # type: ignore[arg-type]
        self.include_api_details = include_api_details

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)

        if self.include_api_details:
            if getattr(record, "api_data", None):
                result += f"\nAPI Data: {record.api_data}"
            if getattr(record, "response", None):
                result += f"\nResponse: {record.response}"

        return result


def setup_main_log_file(
    output_dir: str, debug_api: bool = False, json_format: bool = False
) -> logging.FileHandler:
    """
    Set up a file handler for the main ``migration.log`` file.

    Args:
        output_dir: The output directory path
        debug_api: If True, include API request/response details
        json_format: If True, write one JSON object per line instead of text

    Returns:
        The file handler for the main log file
    """
    os.makedirs(output_dir, exist_ok=True)
    log_file = os.path.join(output_dir, "migration.log")

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setLevel(logging.DEBUG)  # Always use DEBUG level for file handlers

    formatter: logging.Formatter
    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = EnhancedFormatter(
            "%(asctime)s - %(levelname)s - %(message)s", include_api_details=debug_api
        )
    file_handler.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(file_handler)

    logger.info(f"Main log file created at: {log_file}")
    return file_handler


def setup_logger(
    verbose: bool = False,
    debug_api: bool = False,
    output_dir: str | None = None,
) -> logging.Logger:
    """
    Set up and return the logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        debug_api: If True, enable detailed API request/response logging
        output_dir: Optional output directory for the main log file

    Returns:
        Configured logger instance
    """
    global _DEBUG_API_ENABLED
    _DEBUG_API_ENABLED = debug_api

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        EnhancedFormatter(verbose=verbose, include_api_details=debug_api)
    )
    logger.addHandler(console_handler)

    if output_dir:
        setup_main_log_file(output_dir, debug_api)

    if debug_api:
        logger.info("API debug logging enabled")

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context to include in the log record
    """
    filtered_kwargs = {k: v for k, v in kwargs.items() if v is not None}

    exc_info = filtered_kwargs.pop("exc_info", None)

    # Only add defaults for API-related logs to avoid unnecessary processing
    if "api_data" in filtered_kwargs or "response" in filtered_kwargs:
        extras = {"api_data": "", "response": "", **filtered_kwargs}
    else:
        extras = filtered_kwargs

    logging.getLogger(LOGGER_NAME).log(level, message, extra=extras, exc_info=exc_info)


def _redact(data: dict[str, Any]) -> dict[str, Any]:
    redacted = dict(data)
    for key in redacted:
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            redacted[key] = "[REDACTED]"
    return redacted


def log_api_request(
    method: str, url: str, data: dict[str, Any] | None = None, **kwargs: Any
) -> None:
    """
    Log an API request when API debug logging is enabled.

    Args:
        method: HTTP method (GET, POST, etc.)
        url: The API endpoint URL
        data: Optional request payload; sensitive keys are redacted
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    log_context = kwargs.copy()
    if data and isinstance(data, dict):
        log_context["api_data"] = json.dumps(_redact(data), indent=2, default=str)

    log_with_context(logging.DEBUG, f"API Request: {method} {url}", **log_context)


def log_api_response(
    status_code: int, url: str, response_data: Any = None, **kwargs: Any
) -> None:
    """
    Log an API response when API debug logging is enabled.

    Args:
        status_code: HTTP status code
        url: The API endpoint URL
        response_data: Optional decoded response body
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    log_context = kwargs.copy()
    if response_data:
        if isinstance(response_data, (dict, list)):
            response_str = json.dumps(response_data, indent=2, default=str)
            if len(response_str) > 2000:
                response_str = response_str[:2000] + "... [truncated]"
        else:
            response_str = str(response_data)
            if len(response_str) > 1000:
                response_str = response_str[:1000] + "... [truncated]"
        log_context["response"] = response_str

    log_with_context(
        logging.DEBUG, f"API Response: {status_code} from {url}", **log_context
    )


def is_debug_api_enabled() -> bool:
    """Check if API debug logging is enabled."""
    return _DEBUG_API_ENABLED


def get_logger() -> logging.Logger:
    """Get the basecamp_migrator logger, creating it with defaults if needed."""
    migrator_logger = logging.getLogger(LOGGER_NAME)
    if not migrator_logger.handlers:
        migrator_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(EnhancedFormatter())
        migrator_logger.addHandler(handler)
    return migrator_logger


# Module logger - will be properly initialized when setup_logger is called
logger = get_logger()
