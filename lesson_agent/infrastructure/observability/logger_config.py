import logging
import time

import structlog

from lesson_agent.core.settings import settings


def rename_event_to_message(_, __, event_dict):
    """Canonical schema: the event name travels as `message`."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def configure_structlog(level: str | None = None, fmt: str | None = None) -> None:
    """
    Configures structlog on top of standard logging.

    Run-scoped fields (run_id, stage) are bound explicitly on the logger that
    travels with each workflow run, never through context-local storage.
    """
    resolved_level = str(level or settings.LOG_LEVEL or "INFO").upper()
    log_level = getattr(logging, resolved_level, logging.INFO)
    resolved_format = str(fmt or settings.LOG_FORMAT or "json").lower()

    logging.basicConfig(format="%(message)s", level=log_level)

    processors = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if resolved_format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(rename_event_to_message)
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def perf_now() -> float:
    return time.perf_counter()


def elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
