"""structlog setup: one JSON object per line on stdout, secrets scrubbed."""

import logging
import re
import sys

import structlog

# Gemini and Cloud TTS take the API key as a ``key`` query parameter
KEY_PARAM_RE = re.compile(r"([?&]key=)[^&\s\"']+")
SECRET_FIELDS = {"password", "token", "api_key", "authorization"}
# httpx logs every request URL at INFO, key included
QUIET_LOGGERS = ("httpx", "httpcore")


def redact_secrets(logger, method_name, event_dict):
    for field, value in event_dict.items():
        if field in SECRET_FIELDS and value:
            event_dict[field] = "***"
        elif isinstance(value, str) and "key=" in value:
            event_dict[field] = KEY_PARAM_RE.sub(r"\1***", value)
    return event_dict


def setup_logging(level: str = "INFO", json_logs: bool = True):
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_logs:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer(ensure_ascii=False)]
    else:
        renderer = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            *renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str = "newsbrief"):
    return structlog.get_logger(name)
