from __future__ import annotations

import datetime as dt
import logging
import threading
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from admarket.config import settings

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class ErrorType(str, Enum):
    validation = "ValidationError"
    authentication = "AuthenticationError"
    authorization = "AuthorizationError"
    not_found = "NotFoundError"
    database = "DatabaseError"
    external_api = "ExternalAPIError"
    payment = "PaymentError"
    nostr = "NostrError"
    internal = "InternalError"


STATUS_BY_TYPE: Dict[ErrorType, int] = {
    ErrorType.validation: 400,
    ErrorType.authentication: 401,
    ErrorType.payment: 402,
    ErrorType.authorization: 403,
    ErrorType.not_found: 404,
    ErrorType.database: 500,
    ErrorType.nostr: 500,
    ErrorType.internal: 500,
    ErrorType.external_api: 502,
}

# Errors that a retry cannot fix.
NON_RETRYABLE = {ErrorType.validation, ErrorType.authentication, ErrorType.authorization, ErrorType.not_found}


class AppError(Exception):
    error_type: ErrorType = ErrorType.internal

    def __init__(self, message: str, details: Any = None, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.code = code
        self.status_code = status_code or STATUS_BY_TYPE[self.error_type]

    @property
    def retryable(self) -> bool:
        return self.error_type not in NON_RETRYABLE


class ValidationError(AppError):
    error_type = ErrorType.validation


class AuthenticationError(AppError):
    error_type = ErrorType.authentication


class AuthorizationError(AppError):
    error_type = ErrorType.authorization


class NotFoundError(AppError):
    error_type = ErrorType.not_found


class DatabaseError(AppError):
    error_type = ErrorType.database


class ExternalAPIError(AppError):
    error_type = ErrorType.external_api


class PaymentError(AppError):
    error_type = ErrorType.payment


class NostrError(AppError):
    error_type = ErrorType.nostr


class InternalError(AppError):
    error_type = ErrorType.internal


class ErrorService:
    """In-process error registry keyed by correlation id."""

    CORRELATION_TTL_SECONDS = 30 * 60
    MAX_HISTORY = 100
    MAX_TRACE_CONTEXTS = 1000

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._errors: List[Dict[str, Any]] = []
        self._by_correlation: Dict[str, tuple[float, List[str]]] = {}
        # Insertion order is expiry order; set_trace_context re-appends.
        self._trace_context: Dict[str, tuple[float, Dict[str, Any]]] = {}

    @staticmethod
    def new_correlation_id() -> str:
        return str(uuid.uuid4())

    def record(
        self,
        error_type: ErrorType,
        message: str,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        entry = {
            "id": str(uuid.uuid4()),
            "type": error_type.value,
            "message": message,
            "correlation_id": correlation_id,
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "context": context or {},
        }
        with self._lock:
            self._cleanup_locked()
            self._errors.append(entry)
            if len(self._errors) > self.MAX_HISTORY:
                self._errors = self._errors[-self.MAX_HISTORY :]
            if correlation_id:
                _, ids = self._by_correlation.get(correlation_id, (0.0, []))
                ids.append(entry["id"])
                self._by_correlation[correlation_id] = (time.time() + self.CORRELATION_TTL_SECONDS, ids)
        return entry

    def get_related_errors(self, correlation_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._cleanup_locked()
            item = self._by_correlation.get(correlation_id)
            if not item:
                return []
            ids = set(item[1])
            return [e for e in self._errors if e["id"] in ids]

    def set_trace_context(self, correlation_id: str, **context: Any) -> None:
        with self._lock:
            _, current = self._trace_context.pop(correlation_id, (0.0, {}))
            current.update(context)
            self._trace_context[correlation_id] = (time.time() + self.CORRELATION_TTL_SECONDS, current)
            self._prune_traces_locked()

    def get_trace_context(self, correlation_id: str) -> Dict[str, Any]:
        with self._lock:
            expires_at, context = self._trace_context.get(correlation_id, (0.0, {}))
            return dict(context) if expires_at >= time.time() else {}

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            return list(reversed(self._errors[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
            self._by_correlation.clear()
            self._trace_context.clear()

    def _cleanup_locked(self) -> None:
        now = time.time()
        expired = [cid for cid, (expires_at, _) in self._by_correlation.items() if expires_at < now]
        for cid in expired:
            self._by_correlation.pop(cid, None)
        self._prune_traces_locked()

    def _prune_traces_locked(self) -> None:
        now = time.time()
        while self._trace_context:
            oldest = next(iter(self._trace_context))
            expires_at, _ = self._trace_context[oldest]
            if expires_at >= now and len(self._trace_context) <= self.MAX_TRACE_CONTEXTS:
                break
            del self._trace_context[oldest]


error_service = ErrorService()


def correlation_id_for(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


def error_response(request: Request, error_type: ErrorType, message: str, status_code: int, details: Any = None, exc: Exception | None = None) -> JSONResponse:
    correlation_id = correlation_id_for(request)
    error_service.record(
        error_type,
        message,
        correlation_id=correlation_id,
        context={"path": request.url.path, "method": request.method},
    )
    body: Dict[str, Any] = {"error": error_type.value, "message": message}
    if details is not None:
        body["details"] = details
    if correlation_id:
        body["correlationId"] = correlation_id
    if settings.debug and exc is not None:
        body["debug"] = type(exc).__name__
    headers = {CORRELATION_HEADER: correlation_id} if correlation_id else None
    return JSONResponse(body, status_code=status_code, headers=headers)


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error_type.value, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", exc.error_type.value, request.method, request.url.path, exc.message)
    details = exc.details
    if exc.code and details is None:
        details = {"code": exc.code}
    elif exc.code and isinstance(details, dict):
        details = {"code": exc.code, **details}
    return error_response(request, exc.error_type, exc.message, exc.status_code, details, exc)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query")]
        fields.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return error_response(request, ErrorType.validation, "Invalid request", 400, {"fields": fields}, exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    by_status = {v: k for k, v in STATUS_BY_TYPE.items() if k not in {ErrorType.database, ErrorType.nostr}}
    error_type = by_status.get(exc.status_code, ErrorType.internal if exc.status_code >= 500 else ErrorType.validation)
    if exc.status_code == 405:
        error_type = ErrorType.validation
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = error_response(request, error_type, message, exc.status_code, exc=exc)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return error_response(request, ErrorType.database, "Database operation failed", 500, exc=exc)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, ErrorType.internal, "An unexpected error occurred", 500, exc=exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
