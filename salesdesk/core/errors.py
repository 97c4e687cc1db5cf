import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    INFEASIBLE_PLAN = "INFEASIBLE_PLAN"
    PV_UNREACHABLE = "PV_UNREACHABLE"
    CONVERGENCE_FAIL = "CONVERGENCE_FAIL"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    FORBIDDEN_ROLE = "FORBIDDEN_ROLE"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    RENDER_TIMEOUT = "RENDER_TIMEOUT"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.INFEASIBLE_PLAN: 422,
    ErrorKind.PV_UNREACHABLE: 422,
    ErrorKind.CONVERGENCE_FAIL: 422,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.FORBIDDEN_ROLE: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.RENDER_TIMEOUT: 504,
}


class DomainError(Exception):
    """Single failure type raised by the pricing engine and the workflow services."""

    def __init__(self, kind: ErrorKind, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"DomainError({self.kind.value}, {self.message!r})"


def not_found(entity: str, entity_id: Any) -> DomainError:
    return DomainError(ErrorKind.NOT_FOUND, f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=HTTP_STATUS_BY_KIND.get(exc.kind, 400),
            content={"error": exc.to_dict(), "path": str(request.url)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "kind": ErrorKind.VALIDATION.value,
                    "message": "Validation failed.",
                    "details": {"errors": jsonable_errors(exc.errors())},
                },
                "path": str(request.url),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error.",
                "path": str(request.url),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)


def jsonable_errors(errors: Any) -> list:
    # pydantic v2 puts the raw exception object under ctx["error"]
    cleaned = []
    for error in errors:
        item = dict(error)
        ctx = item.get("ctx")
        if isinstance(ctx, dict):
            item["ctx"] = {key: str(value) for key, value in ctx.items()}
        item.pop("input", None)
        cleaned.append(item)
    return cleaned
