"""Structured logging setup for the knowledge pipeline.

Events are emitted with structlog under ``knowledge.*``, ``vector_index.*``
and ``embeddings.*`` names. Production renders one JSON object per line
with structured tracebacks; development renders console output.
Context bound with ``structlog.contextvars.bind_contextvars`` (for example
a ``scope_id`` for the duration of a request) is merged into every event.
"""

from __future__ import annotations

import logging

import structlog

from src.agent_knowledge.config import Environment, KnowledgeSettings, get_settings

# HTTP transports of the OpenAI and Qdrant clients log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def _renderer_chain(environment: Environment) -> list:
    if environment == Environment.production:
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    # ConsoleRenderer formats exc_info itself.
    return [structlog.dev.ConsoleRenderer()]


def configure_structlog(settings: KnowledgeSettings | None = None) -> None:
    """Route structlog through stdlib logging at the configured level."""
    settings = settings or get_settings()
    level = settings.log_level.upper()

    logging.basicConfig(format="%(message)s", level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *_renderer_chain(settings.environment),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
