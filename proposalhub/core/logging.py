"""Configuration de logging basée sur structlog.

Les événements (`http_retry`, `analysis_degraded`, `dual_write_partial`, ...) sont rendus en
console lisible en mode debug, en JSON sinon. Le contexte lié par le middleware (request_id,
path) est fusionné dans chaque événement.
"""

import logging
import sys

import structlog


def setup_logging(debug: bool = False, json_logs: bool | None = None) -> None:
    """Configure structlog et aligne le niveau du logging standard (uvicorn, httpx)."""
    level = logging.DEBUG if debug else logging.INFO
    if json_logs is None:
        json_logs = not debug
    renderer = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level, stream=sys.stdout, format="%(levelname)s %(name)s %(message)s")
    # httpx journalise chaque requête en INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
