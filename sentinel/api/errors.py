"""Gestion standardisée des erreurs API avec enveloppe `{code, message}`.

Correspondances :
- NotFoundError -> 404 NOT_FOUND
- InvalidTransitionError -> 409 CONFLICT ; RunInProgressError -> 409 RUN_IN_PROGRESS
- ConflictError -> 409 CONFLICT
- DataQualityError, SourceConfigError, validation de requête -> 422 VALIDATION_ERROR
- LLMSchemaError -> 502 LLM_SCHEMA_ERROR ; erreur du SDK OpenAI -> 502 LLM_UNAVAILABLE
- toute autre exception -> 500 INTERNAL_ERROR
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import OpenAIError
from starlette.exceptions import HTTPException

from sentinel.domain.errors import (
    ConflictError,
    DataQualityError,
    InvalidTransitionError,
    LLMSchemaError,
    NotFoundError,
    RunInProgressError,
    SourceConfigError,
)

log = structlog.get_logger(__name__)

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
}


@dataclass
class ErrorEnvelope:
    """Standard error envelope for API responses."""

    code: str
    message: str
    request_id: str | None = None
    details: Any | None = None


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    request_id: str | None = None,
    details: Any | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(code=code, message=message, request_id=request_id, details=details)
    content: dict[str, Any] = {"code": envelope.code, "message": envelope.message}
    if envelope.request_id:
        content["request_id"] = envelope.request_id
    if envelope.details:
        content["details"] = envelope.details
    return JSONResponse(status_code=status_code, content=content)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")


def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return create_error_response(404, "NOT_FOUND", str(exc), _request_id(request))


def handle_invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    log.info("transition_rejected", entity=exc.entity, current=exc.current, target=exc.target)
    return create_error_response(
        409,
        "CONFLICT",
        str(exc),
        _request_id(request),
        {"current": exc.current, "target": exc.target},
    )


def handle_run_in_progress(request: Request, exc: RunInProgressError) -> JSONResponse:
    return create_error_response(409, "RUN_IN_PROGRESS", str(exc), _request_id(request), {"job": exc.job})


def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
    return create_error_response(409, "CONFLICT", str(exc), _request_id(request), {"entity": exc.entity})


def handle_data_quality(request: Request, exc: DataQualityError | SourceConfigError) -> JSONResponse:
    return create_error_response(422, "VALIDATION_ERROR", str(exc), _request_id(request))


def handle_llm_schema(request: Request, exc: LLMSchemaError) -> JSONResponse:
    log.warning("llm_schema_error", path=request.url.path, stage=exc.stage, error=str(exc))
    return create_error_response(
        502,
        "LLM_SCHEMA_ERROR",
        "The language model returned an invalid response",
        _request_id(request),
        {"stage": exc.stage},
    )


def handle_llm_unavailable(request: Request, exc: OpenAIError) -> JSONResponse:
    log.error("llm_unavailable", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return create_error_response(502, "LLM_UNAVAILABLE", "The language model provider failed", _request_id(request))


def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return create_error_response(422, "VALIDATION_ERROR", "Invalid request", _request_id(request), errors)


def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return create_error_response(exc.status_code, code, str(exc.detail), _request_id(request))


def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "unexpected_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True,
    )
    return create_error_response(500, "INTERNAL_ERROR", "An unexpected error occurred", _request_id(request))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotFoundError, handle_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(InvalidTransitionError, handle_invalid_transition)  # type: ignore[arg-type]
    app.add_exception_handler(RunInProgressError, handle_run_in_progress)  # type: ignore[arg-type]
    app.add_exception_handler(ConflictError, handle_conflict)  # type: ignore[arg-type]
    app.add_exception_handler(DataQualityError, handle_data_quality)  # type: ignore[arg-type]
    app.add_exception_handler(SourceConfigError, handle_data_quality)  # type: ignore[arg-type]
    app.add_exception_handler(LLMSchemaError, handle_llm_schema)  # type: ignore[arg-type]
    app.add_exception_handler(OpenAIError, handle_llm_unavailable)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_generic_exception)
