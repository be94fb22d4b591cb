import logging
import sys
from typing import Any

from loguru import logger

from cohort_reports.config import get_settings

# Bound fields shown ahead of the message, in this order
CONTEXT_FIELDS = ("course_id", "user_id", "viewer_id")

_QUIET_PREFIXES = ("sqlalchemy.engine", "httpx")


class InterceptHandler(logging.Handler):
    """Intercept stdlib logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _format_record(record: dict[str, Any]) -> str:
    """
    Build the loguru format string for one record.

    Digest and report lines carry the course and recipient as bound extras;
    those go in a fixed prefix so one run's lines can be grepped by course.
    Remaining extras follow the message.
    """
    extra = record["extra"]
    context = " ".join(f"{key}={{extra[{key}]}}" for key in CONTEXT_FIELDS if key in extra)
    rest = [key for key in extra if key not in CONTEXT_FIELDS and key != "name"]

    fmt = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]} | "
    if "name" not in extra:
        fmt = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name} | "
    if context:
        fmt += f"[{context}] "
    fmt += "{message}"
    if rest:
        fmt += " | " + " ".join(f"{key}={{extra[{key}]}}" for key in rest)
    return fmt + "\n{exception}"


def _quiet_filter(record: dict[str, Any]) -> bool:
    """Drop SQL echo, HTTP client chatter and health probes below WARNING."""
    if record["level"].no >= logging.WARNING:
        return True
    name = record["name"] or ""
    if name.startswith(_QUIET_PREFIXES):
        return False
    return "/health" not in record["message"]


def setup_logging() -> None:
    """Configure loguru for the web app and the digest job."""
    settings = get_settings()

    logger.remove()

    if settings.debug:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=_format_record,
            colorize=True,
            backtrace=True,
            diagnose=True,
        )
    else:
        # The digest job runs from cron, which mails whatever lands on stderr
        logger.add(
            sys.stderr,
            level="INFO",
            format=_format_record,
            filter=_quiet_filter,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ["uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine", "httpx"]:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Get a logger bound to a module name."""
    return logger.bind(name=name)
