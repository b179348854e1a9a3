"""structlog configuration shared by the API, the worker and CLI scripts."""

import structlog

from reconciliation_service.config import Settings, get_settings


def configure_logging(settings: Settings | None = None, *, verbose: bool = False) -> None:
    """Configure structlog processors and level filtering."""
    settings = settings or get_settings()
    level = "DEBUG" if verbose else settings.log_level

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
