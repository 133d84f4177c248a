"""Structured logging setup for Arke Edit."""

import os
from pathlib import Path
from typing import Any, Optional, Union

import structlog


DEFAULT_LOG_FILE = Path.home() / ".cache" / "arke-edit" / "logs" / "arke-edit.log"

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Event keys whose values are masked before rendering
_SECRET_KEYS = frozenset({"auth_token", "authorization", "token"})


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor masking credentials, including inside payload dicts."""
    for key, value in event_dict.items():
        if key.lower() in _SECRET_KEYS and value:
            event_dict[key] = "***"
        elif isinstance(value, dict):
            event_dict[key] = {
                k: "***" if k.lower() in _SECRET_KEYS and v else v
                for k, v in value.items()
            }
    return event_dict


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Configure structlog to write JSON lines to a log file.

    The level comes from ``level``, else ARKE_EDIT_LOG_LEVEL, else INFO;
    unknown names fall back to INFO. The file comes from ``log_file``,
    else ARKE_EDIT_LOG_FILE, else ~/.cache/arke-edit/logs/arke-edit.log.

    Log levels:
    - DEBUG: Request payloads, decoded responses
    - INFO: Session workflow steps (load, save, reprocess, poll results)
    - WARNING: Retry attempts, skipped components
    - ERROR: Remote failures, CAS conflicts, poll timeouts

    Example:
        ARKE_EDIT_LOG_LEVEL=DEBUG python my_script.py
        tail -f ~/.cache/arke-edit/logs/arke-edit.log | jq .

    Returns:
        Path of the log file in use
    """
    path = Path(log_file or os.environ.get("ARKE_EDIT_LOG_FILE") or DEFAULT_LOG_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)

    log_level = (level or os.environ.get("ARKE_EDIT_LOG_LEVEL", "INFO")).upper()
    if log_level not in _VALID_LEVELS:
        log_level = "INFO"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=open(path, "a")),
        cache_logger_on_first_use=False,
    )
    return path


def get_logger(name: str) -> Any:
    """Structured logger for a module; use snake_case event names."""
    return structlog.get_logger(name)
