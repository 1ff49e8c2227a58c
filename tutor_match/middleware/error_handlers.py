"""
HTTP middleware for the tutor matching API.

Order in ``tutor_match.main`` (outermost first): HealthCheck, ExceptionHandler,
Performance, RequestLogging. The health middleware marks probes before the
others look at them; the exception handler assigns the request id so every
inner layer can log it.
"""
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Tuple

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from tutor_match.utils.exceptions import MatchingBaseException, map_to_http_exception
from tutor_match.utils.logging_config import get_logger

logger = get_logger(__name__)


def _is_quiet(request: Request) -> bool:
    return getattr(request.state, "skip_logging", False)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def classify_exception(exc: Exception) -> Tuple[int, Dict[str, Any], int]:
    """Return (status_code, detail, log level) for an exception escaping a route."""
    if isinstance(exc, MatchingBaseException):
        http_exc = map_to_http_exception(exc)
        level = logging.ERROR if http_exc.status_code >= 500 else logging.WARNING
        return http_exc.status_code, http_exc.detail, level

    if isinstance(exc, RequestValidationError):
        return 422, {
            "error": "Validation failed",
            "message": "Request data validation failed",
            "validation_errors": exc.errors(),
        }, logging.WARNING

    if isinstance(exc, ValidationError):
        # A stored document or a provider payload did not fit the models
        return 400, {
            "error": "Data validation failed",
            "message": "Invalid data format or values",
            "validation_errors": exc.errors(),
        }, logging.ERROR

    if isinstance(exc, HTTPException):
        return exc.status_code, exc.detail, logging.WARNING

    return 500, {
        "error": "Internal server error",
        "message": "An unexpected error occurred. Please try again later.",
    }, logging.ERROR


def error_body(request_id: str, status_code: int, detail: Any) -> Dict[str, Any]:
    if not isinstance(detail, dict):
        detail = {"message": str(detail)}
    return {
        "success": False,
        "timestamp": datetime.utcnow().isoformat(),
        "request_id": request_id,
        "status_code": status_code,
        **detail,
    }


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Assigns the request id and turns escaping exceptions into JSON errors."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as exc:
            status_code, detail, level = classify_exception(exc)
            logger.log(
                level,
                f"{exc.__class__.__name__} in {request.method} {request.url.path}: {exc}",
                extra={
                    "request_id": request_id,
                    "status_code": status_code,
                    "details": getattr(exc, "details", None),
                },
                exc_info=status_code >= 500 and not isinstance(exc, MatchingBaseException),
            )
            return JSONResponse(
                status_code=status_code,
                content=error_body(request_id, status_code, detail),
                headers={"X-Request-ID": request_id},
            )

        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One INFO line per request with status and duration."""

    async def dispatch(self, request: Request, call_next):
        if _is_quiet(request):
            return await call_next(request)

        request_id = _request_id(request)
        started = time.perf_counter()
        logger.debug(
            f"{request.method} {request.url.path} params={dict(request.query_params)}",
            extra={"request_id": request_id},
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.info(
                f"{request.method} {request.url.path} raised after {time.perf_counter() - started:.3f}s",
                extra={"request_id": request_id},
            )
            raise

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {time.perf_counter() - started:.3f}s",
            extra={"request_id": request_id, "status_code": response.status_code},
        )
        return response


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Sets X-Processing-Time and warns on requests slower than the threshold (seconds)."""

    def __init__(self, app, slow_request_threshold: float = 2.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        if elapsed > self.slow_request_threshold:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {elapsed:.3f}s",
                extra={"request_id": _request_id(request), "threshold": self.slow_request_threshold},
            )
        response.headers["X-Processing-Time"] = f"{elapsed:.3f}"
        return response


class HealthCheckMiddleware(BaseHTTPMiddleware):
    """Marks health probes so the other middleware skip logging them."""

    HEALTH_PATHS = ("/health", "/healthz", "/ping")

    async def dispatch(self, request: Request, call_next):
        request.state.skip_logging = request.url.path in self.HEALTH_PATHS
        return await call_next(request)
