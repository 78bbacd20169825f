from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "branchvault"

# Environment variables for configuration
ENV_LOG_DIR = "BRANCHVAULT_LOG_DIR"
ENV_LOG_LEVEL = "BRANCHVAULT_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "BRANCHVAULT_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "BRANCHVAULT_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "BRANCHVAULT_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".branchvault" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

_logger_initialized = False
_session_start: Optional[str] = None


def _session_stamp() -> str:
    global _session_start
    if _session_start is None:
        _session_start = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
    return _session_start


def _get_log_level(level_name: Optional[str] = None) -> int:
    """Resolve a level name, falling back to the environment, then INFO."""
    if level_name is None:
        level_name = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL)
    return getattr(logging, level_name.upper(), logging.INFO)


def _get_log_file_path(log_dir: Optional[str] = None, disabled: Optional[bool] = None) -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled, either by ``disabled`` or via
    BRANCHVAULT_LOG_DISABLE_FILE=1 when ``disabled`` is not given.
    """
    if disabled is None:
        disabled = os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes")
    if disabled:
        return None

    directory = Path(log_dir or os.getenv(ENV_LOG_DIR, DEFAULT_LOG_DIR))
    directory.mkdir(parents=True, exist_ok=True)

    # Session-based filename: branchvault_2024-01-15_143022.log
    return directory / f"branchvault_{_session_stamp()}.log"


def configure_logging(settings: Any = None) -> logging.Logger:
    """(Re)install handlers on the branchvault logger.

    ``settings`` is a LoggingConfig, already merged with the environment by
    the config loader. Without it the BRANCHVAULT_LOG_* variables are read
    directly. Each call replaces the handlers of the previous one.

    By default, logs to ~/.branchvault/logs/branchvault_<session>.log

    Configuration via environment variables:
    - BRANCHVAULT_LOG_DIR: Directory for log files (default: ~/.branchvault/logs/)
    - BRANCHVAULT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - BRANCHVAULT_LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
    - BRANCHVAULT_LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    - BRANCHVAULT_LOG_DISABLE_FILE: Set to 1 to disable file logging (stderr only)
    """
    global _logger_initialized
    _logger_initialized = False
    return _get_logger(settings)


def _get_logger(settings: Any = None) -> logging.Logger:
    """Get or initialize the branchvault root logger."""
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()  # Remove any existing handlers

        if settings is not None:
            log_level = _get_log_level(settings.level)
            max_bytes = settings.max_bytes
            backup_count = settings.backup_count
        else:
            log_level = _get_log_level()
            max_bytes = int(os.getenv(ENV_LOG_MAX_BYTES, DEFAULT_MAX_BYTES))
            backup_count = int(os.getenv(ENV_LOG_BACKUP_COUNT, DEFAULT_BACKUP_COUNT))
        logger.setLevel(log_level)

        # Human-readable formatter
        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s %(name)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        # File handler (enabled by default)
        try:
            if settings is not None:
                log_file = _get_log_file_path(settings.dir, bool(settings.disable_file))
            else:
                log_file = _get_log_file_path()
        except OSError:
            log_file = None
        if log_file:
            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        # Also log to stderr for visibility (only warnings and above by default)
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Child logger for a component, e.g. ``branchvault.manifest``.

    Handlers are only attached to the package logger by configure_logging();
    library use without it falls back to whatever the host application set up.
    """
    return logging.getLogger(f"{LOGGER_NAME}.{component}")


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} " + json.dumps(fields, separators=(",", ":"), sort_keys=True, default=str)


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON for safety. Keep schema lightweight.

    Args:
        action: Name of the action being logged
        outcome: Result status ("ok", "error", "timed_out", etc.)
        duration_ms: How long the action took in milliseconds
        logger: Logger to emit on (defaults to the package logger)
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if fields:
        payload.update(fields)

    (logger or logging.getLogger(LOGGER_NAME)).info(
        json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)
    )


def log_debug(message: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only formatted when the logger is enabled for DEBUG.
    """
    target = logger or logging.getLogger(LOGGER_NAME)
    if target.isEnabledFor(logging.DEBUG):
        target.debug(_with_fields(message, fields))


def log_warning(message: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    (logger or logging.getLogger(LOGGER_NAME)).warning(_with_fields(message, fields))


def log_error(message: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    (logger or logging.getLogger(LOGGER_NAME)).error(_with_fields(message, fields))


@contextmanager
def timeit(action: str, *, logger: Optional[logging.Logger] = None, **fields: Any):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" and re-raises.

    Yields:
        A dict whose entries are added to the emitted event
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="ok", duration_ms=duration_ms, logger=logger, **{**fields, **result_info})
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(action, outcome="error", duration_ms=duration_ms, logger=logger, **fields)
        raise
