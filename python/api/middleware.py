"""
FastAPI Middleware for the HalamangGaling Knowledge API

Provides CORS configuration, request logging, and global error handling.
Every error leaves the API in the same envelope:

    {"success": false, "message": "...", "error": {"code": "...", "message": "...", "timestamp": "..."}}
"""

import os
import re
import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",  # React dev port
    "http://localhost:5173",  # Vite dev port
    "http://localhost:8080",
    "http://localhost:8000",  # FastAPI default port
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
    "http://127.0.0.1:8000",
]

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_EXPOSE_HEADERS = [
    "X-Request-ID",
    "X-Processing-Time-MS",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
]


def _build_cors_regex_pattern(allowed_origins: List[str]) -> tuple:
    """Build regex pattern for CORS from allowed origins list.

    Args:
        allowed_origins: List of allowed origins (may include subdomain
            wildcards like https://*.halamanggaling.ph)

    Returns:
        Tuple of (combined_regex_pattern or None, exact_origins list)
    """
    regex_patterns = []
    exact_origins = []

    for origin in allowed_origins:
        if "*." in origin:
            scheme, _, host = origin.partition("://*.")
            regex_patterns.append(re.escape(f"{scheme}://") + r"[\w-]+\." + re.escape(host))
        else:
            exact_origins.append(origin)

    if not regex_patterns:
        return None, exact_origins

    combined_regex = "|".join(f"({p})" for p in regex_patterns)
    if exact_origins:
        exact_escaped = "|".join(re.escape(o) for o in exact_origins)
        combined_regex = f"({combined_regex})|({exact_escaped})"

    return combined_regex, exact_origins


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the application.

    Restricts origins to localhost by default. Origins can be customized via
    the CORS_ORIGINS environment variable (comma-separated list), which
    accepts subdomain wildcards such as https://*.halamanggaling.ph.
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    else:
        allowed_origins = DEFAULT_CORS_ORIGINS

    combined_regex, exact_origins = _build_cors_regex_pattern(allowed_origins)

    if combined_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=combined_regex,
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=["*"],
            expose_headers=CORS_EXPOSE_HEADERS,
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=exact_origins,
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=["*"],
            expose_headers=CORS_EXPOSE_HEADERS,
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs.

    Also hands the request id and client address to the security logger so
    that security events can be correlated with request lines.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        from security_logger import get_security_logger

        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))
        client_ip = request.client.host if request.client else ""

        # Store request ID for later use
        request.state.request_id = request_id
        request.state.start_time = start_time

        security = get_security_logger()
        security.set_request_context(request_id=request_id, source_ip=client_ip)

        # Log incoming request (sanitize path to prevent log injection)
        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise
        finally:
            security.clear_request_context()


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    details: Optional[Dict[str, Any]] = None,
    errors: Optional[List[Dict[str, str]]] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        details: Extra machine-readable fields merged into ``error`` (optional)
        errors: Every failing field for validation errors (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail: Dict[str, Any] = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if details:
        error_detail.update(details)
    if errors:
        error_detail["errors"] = errors

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error_detail},
    )


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def authentication_error_handler(request: Request, exc) -> JSONResponse:
    logger.info("Authentication failed: reason=%s request_id=%s", exc.reason, _request_id(request))
    response = create_error_response(
        code="AUTHENTICATION_REQUIRED",
        message=exc.message,
        status_code=status.HTTP_401_UNAUTHORIZED,
        details={"reason": exc.reason},
    )
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


async def authorization_error_handler(request: Request, exc) -> JSONResponse:
    return create_error_response(
        code="ACCESS_DENIED",
        message=exc.message,
        status_code=status.HTTP_403_FORBIDDEN,
        details=exc.to_details(),
    )


async def record_validation_error_handler(request: Request, exc) -> JSONResponse:
    return create_error_response(
        code="VALIDATION_ERROR",
        message=exc.message,
        status_code=status.HTTP_400_BAD_REQUEST,
        errors=exc.errors,
    )


def _field_path(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "request"


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report every invalid field, not just the first"""
    errors = [
        {"field": _field_path(err.get("loc", ())), "message": err.get("msg", "Invalid value")}
        for err in exc.errors()
    ]
    return create_error_response(
        code="VALIDATION_ERROR",
        message="Validation failed",
        status_code=status.HTTP_400_BAD_REQUEST,
        errors=errors,
    )


async def not_found_error_handler(request: Request, exc) -> JSONResponse:
    return create_error_response(
        code="NOT_FOUND",
        message=str(exc) or "Not found",
        status_code=status.HTTP_404_NOT_FOUND,
    )


async def duplicate_error_handler(request: Request, exc) -> JSONResponse:
    logger.warning("Conflict: %s request_id=%s", sanitize_for_logging(str(exc)), _request_id(request))
    return create_error_response(
        code="CONFLICT",
        message=str(exc) or "Conflicts with an existing record",
        status_code=status.HTTP_409_CONFLICT,
    )


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Storage failure: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        _request_id(request),
    )
    return create_error_response(
        code="STORAGE_ERROR",
        message="The knowledge store is unavailable. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def configuration_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Configuration error: %s", sanitize_for_logging(str(exc)))
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        _request_id(request),
    )
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        _request_id(request),
    )

    response = create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    from access_control import AuthorizationError, RecordValidationError
    from auth import AuthenticationError
    from config_manager import ConfigurationError
    from database.repositories import DuplicateRecordError, RecordNotFoundError, StorageError

    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(AuthorizationError, authorization_error_handler)
    app.add_exception_handler(RecordValidationError, record_validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(RecordNotFoundError, not_found_error_handler)
    app.add_exception_handler(DuplicateRecordError, duplicate_error_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
