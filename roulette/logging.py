"""structlog setup for the service, the CLI and the reload threads."""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path
from typing import List, Optional, Union

import structlog

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]

# Chatty dependencies, held at WARNING outside of debug runs.
_QUIETED = (
    "apscheduler",
    "urllib3",
    "watchfiles",
    "uvicorn.access",
)


def _handlers(log_file: Optional[Union[str, Path]]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    return handlers


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Route structlog events through stdlib logging.

    ``json_output`` switches the console renderer for one JSON object per
    line; ``log_file`` adds a second handler that receives the same lines.
    Safe to call more than once: the root handlers are replaced each time.
    """

    level = level.upper()
    logging.basicConfig(level=level, format="%(message)s", handlers=_handlers(log_file), force=True)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, _renderer(json_output)],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    quiet_level = logging.INFO if level == "DEBUG" else logging.WARNING
    for name in _QUIETED:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id() -> str:
    """Start a fresh per-request logging context and return its id."""

    request_id = uuid.uuid4().hex[:8]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id
