"""Gestion standardisée des erreurs API avec enveloppes d'erreur.

Traduit les erreurs du domaine (`ProposalHubError`) en réponses HTTP portant une enveloppe
stable `{code, message, trace_id, details?}`. La trace de pile n'est ajoutée qu'en développement.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from proposalhub.core.constants import (
    HTTP_BAD_GATEWAY,
    HTTP_BAD_REQUEST,
    HTTP_CONFLICT,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_NOT_FOUND,
    HTTP_SERVICE_UNAVAILABLE,
)
from proposalhub.domain.errors import ErrorCodes, ProposalHubError, TransientServiceError

log = structlog.get_logger(__name__).bind(component="api_errors")

STATUS_BY_CODE: dict[str, int] = {
    ErrorCodes.INVALID_INPUT: HTTP_BAD_REQUEST,
    ErrorCodes.UNCONFIGURED: HTTP_SERVICE_UNAVAILABLE,
    ErrorCodes.TRANSIENT_SERVICE_ERROR: HTTP_BAD_GATEWAY,
    ErrorCodes.PERMANENT_SERVICE_ERROR: HTTP_BAD_GATEWAY,
    ErrorCodes.UNPARSABLE_RESPONSE: HTTP_BAD_GATEWAY,
    ErrorCodes.NOT_FOUND: HTTP_NOT_FOUND,
    ErrorCodes.DUPLICATE_VOTE: HTTP_CONFLICT,
    ErrorCodes.STORE_INCONSISTENT: HTTP_INTERNAL_SERVER_ERROR,
    ErrorCodes.OPERATION_FAILED: HTTP_INTERNAL_SERVER_ERROR,
    ErrorCodes.INTERNAL_ERROR: HTTP_INTERNAL_SERVER_ERROR,
}

_HTTP_CODES = {
    400: "BAD_REQUEST",
    404: ErrorCodes.NOT_FOUND,
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: ErrorCodes.INVALID_INPUT,
    500: ErrorCodes.INTERNAL_ERROR,
}


@dataclass
class ErrorEnvelope:
    """Standard error envelope for API responses."""

    code: str
    message: str
    trace_id: str | None = None
    details: dict[str, Any] | None = None
    stack: str | None = None


def create_error_response(status_code: int, envelope: ErrorEnvelope) -> JSONResponse:
    """Create a standardized error response."""
    content: dict[str, Any] = {
        "code": envelope.code,
        "message": envelope.message,
        "trace_id": envelope.trace_id,
    }
    if envelope.details:
        content["details"] = envelope.details
    if envelope.stack:
        content["stack"] = envelope.stack
    return JSONResponse(status_code=status_code, content=content)


def extract_trace_id(request: Request) -> str | None:
    """Identifiant de requête posé par le middleware, sinon en-tête entrant."""
    trace_id = getattr(request.state, "request_id", None)
    if trace_id:
        return trace_id
    return request.headers.get("X-Request-ID") or request.headers.get("X-Trace-ID")


def status_for(exc: ProposalHubError) -> int:
    if isinstance(exc, TransientServiceError) and exc.status_code is None:
        # Épuisement sur timeout / réseau, sans statut distant
        return HTTP_GATEWAY_TIMEOUT
    return STATUS_BY_CODE.get(exc.code, HTTP_INTERNAL_SERVER_ERROR)


def _stack(exc: BaseException, include: bool) -> str | None:
    if not include:
        return None
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def install_error_handlers(app: FastAPI, *, include_stack: bool = False) -> None:
    """Enregistre les gestionnaires d'exceptions sur l'application."""

    async def handle_domain_error(request: Request, exc: ProposalHubError) -> JSONResponse:
        status = status_for(exc)
        trace_id = extract_trace_id(request)
        log.warning(
            "api_error",
            code=exc.code,
            status=status,
            error_message=exc.message,
            trace_id=trace_id,
        )
        return create_error_response(
            status,
            ErrorEnvelope(exc.code, exc.message, trace_id, exc.details, _stack(exc, include_stack)),
        )

    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return create_error_response(
            HTTP_BAD_REQUEST,
            ErrorEnvelope(
                ErrorCodes.INVALID_INPUT,
                "invalid request payload",
                extract_trace_id(request),
                {"errors": errors},
            ),
        )

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return create_error_response(
            exc.status_code, ErrorEnvelope(code, str(exc.detail), extract_trace_id(request))
        )

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        trace_id = extract_trace_id(request)
        log.error(
            "unexpected_error",
            trace_id=trace_id,
            exception_type=type(exc).__name__,
            exc_info=True,
        )
        return create_error_response(
            HTTP_INTERNAL_SERVER_ERROR,
            ErrorEnvelope(
                ErrorCodes.INTERNAL_ERROR,
                "An unexpected error occurred",
                trace_id,
                stack=_stack(exc, include_stack),
            ),
        )

    app.add_exception_handler(ProposalHubError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_generic_exception)


def not_found(message: str) -> HTTPException:
    """Create a 404 Not Found error."""
    return HTTPException(status_code=HTTP_NOT_FOUND, detail=message)
