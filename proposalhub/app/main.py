"""
Application principale FastAPI.

Ce module assemble les composants de l'application : logging, middlewares, routes,
gestionnaires d'erreurs et métriques.
"""

from __future__ import annotations

from fastapi import FastAPI

from proposalhub.api.errors import install_error_handlers
from proposalhub.api.routes_health import router as health_router
from proposalhub.api.routes_proposals import router as proposals_router
from proposalhub.app.metrics import PrometheusMiddleware, metrics_router
from proposalhub.core.container import container
from proposalhub.core.logging import setup_logging
from proposalhub.middlewares.request_id import RequestIDMiddleware


def create_app() -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog)
    - Ajoute les middlewares (request id, métriques)
    - Publie les routes de santé, des propositions et des métriques
    - Installe les enveloppes d'erreur (trace de pile en développement seulement)
    """
    settings = container.settings
    setup_logging(debug=settings.APP_DEBUG)
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.include_router(health_router)
    app.include_router(proposals_router)
    app.include_router(metrics_router)
    install_error_handlers(app, include_stack=settings.is_development)
    return app


app = create_app()
