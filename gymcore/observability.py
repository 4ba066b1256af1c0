from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .config import get_settings
from .errors import LifecycleError


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    """Root logger at the configured level; a no-op when handlers already exist (pytest, uvicorn)."""
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


class RequestTimingLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and adds 'X-Process-Time-Ms' to every response."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("request")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        response.headers["X-Process-Time-Ms"] = str(duration_ms)
        self.logger.info(
            "method=%s path=%s status=%s duration_ms=%s ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.client.host if request.client else "?",
        )
        return response


def _envelope(
    status: int, message: str, path: str, code: Optional[str] = None, details: Optional[dict] = None
) -> dict:
    error = {"status": status, "message": message, "path": path}
    if code is not None:
        error["code"] = code
    if details:
        error["details"] = details
    return {"ok": False, "error": error}


def add_exception_handlers(app: FastAPI) -> None:
    """Every error leaves the API as ``{"ok": false, "error": {...}}``."""

    @app.exception_handler(LifecycleError)
    async def lifecycle_error_handler(request: Request, exc: LifecycleError):
        logger = logging.getLogger("lifecycle")
        log = logger.error if exc.status_code >= 500 else logger.info
        log("code=%s status=%s path=%s message=%s", exc.code, exc.status_code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(exc.status_code, exc.message, request.url.path, exc.code, exc.details),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(exc.status_code, exc.detail if isinstance(exc.detail, str) else "", request.url.path),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=_envelope(
                422, "Invalid request", request.url.path, "validation_error", {"errors": jsonable_errors(exc)}
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logging.getLogger("error").exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content=_envelope(500, "Internal server error", request.url.path))


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
