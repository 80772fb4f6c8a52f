"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus utilisées pour le monitoring des appels sortants
(embeddings, analyse, index vectoriel), du cache d'embeddings et de la double écriture.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Outbound calls (executor)
OUTBOUND_ATTEMPTS = Counter(
    "outbound_call_attempts_total",
    "Outbound call attempts by service and outcome",
    ["service", "outcome"],
)
OUTBOUND_LATENCY = Histogram(
    "outbound_call_latency_seconds",
    "Latency of a single outbound attempt",
    ["service"],
)

# Embeddings
EMBEDDING_CACHE_HITS = Counter(
    "embedding_cache_hits_total",
    "Embedding lookups served from the in-process cache",
)
EMBEDDING_CACHE_MISSES = Counter(
    "embedding_cache_misses_total",
    "Embedding lookups that required a remote call",
)

# Analysis
ANALYSIS_DEGRADED = Counter(
    "analysis_degraded_total",
    "Analysis results returned in a degraded form",
    ["reason"],
)

# Dual-write
STORE_WRITE_FAILURES = Counter(
    "store_write_failures_total",
    "Failed writes per store and operation",
    ["store", "op"],
)
VECTOR_DIMENSION_MISMATCH = Counter(
    "vector_dimension_mismatch_total",
    "Vectors whose length differs from the configured index dimension",
)


@metrics_router.get("/metrics")
def metrics():
    """Registre Prometheus au format texte (exposition 0.0.4)."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def _route_label(request: Request) -> str:
    # Gabarit de route (ex: /proposals/{proposal_id}) pour borner la cardinalité
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.scope.get("path", "unknown")


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Compte les requêtes et mesure leur latence par gabarit de route."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = _route_label(request)
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
