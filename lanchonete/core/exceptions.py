"""
Domain exceptions and global handlers.

Every error leaves the API in one envelope::

    {"success": false, "error": "<message>"}

with ``detail`` added in debug mode and ``request_id`` when the request
id middleware ran.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lanchonete.core.config import get_settings

logger = logging.getLogger(__name__)


class LanchoneteError(Exception):
    """Base class for errors that map straight to an HTTP status."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None, headers: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers


class BusinessRuleError(LanchoneteError):
    """A precondition of the operation does not hold."""
    status_code = 400


class AuthenticationError(LanchoneteError):
    status_code = 401


class PermissionDeniedError(LanchoneteError):
    status_code = 403


class NotFoundError(LanchoneteError):
    status_code = 404


class ConflictError(LanchoneteError):
    """Unique value already taken (email, table number, product name)."""
    status_code = 409


class RateLimitedError(LanchoneteError):
    status_code = 429


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def error_body(request: Request, message: str, detail: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": message}
    if detail is not None and get_settings().debug:
        body["detail"] = detail
    rid = _request_id(request)
    if rid:
        body["request_id"] = rid
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope-producing handlers to ``app``."""

    @app.exception_handler(LanchoneteError)
    async def _domain_handler(request: Request, exc: LanchoneteError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"❌ {exc.message} (request_id={_request_id(request)})")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.message),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, str(exc.detail or "HTTP error")),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0].get("msg") if errors else "Dados inválidos"
        body = error_body(request, f"Dados inválidos: {first}")
        body["errors"] = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors
        ]
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(Exception)
    async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception (request_id={_request_id(request)}): {exc}")
        return JSONResponse(
            status_code=500,
            content=error_body(request, "Erro interno do servidor", detail=str(exc)),
        )
