# src/xinete/api/errors.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from xinete.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PinFailure,
    StoreUnavailable,
    ValidationError,
    XineteError,
)
from xinete.runtime.event_log import log_event

log = logging.getLogger("xinete.http")

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StoreUnavailable, 503),
    (PinFailure, 503),
)


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def conflict(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(409, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_domain(err: XineteError) -> "ApiError":
        status = 500
        for cls, st in _STATUS_BY_ERROR:
            if isinstance(err, cls):
                status = st
                break
        return ApiError(status, err.code, err.reason, dict(err.details or {}))

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=int(self.status_code),
            content={
                "ok": False,
                "error": {"code": self.code, "message": self.message, "details": self.details},
            },
        )


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return exc.to_response()


async def _domain_error_handler(request: Request, exc: XineteError) -> JSONResponse:
    api = ApiError.from_domain(exc)
    if api.status_code >= 500:
        log_event(log, "http_domain_error", level=logging.WARNING, path=str(request.url.path), code=exc.code, reason=exc.reason)
    return api.to_response()


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(XineteError, _domain_error_handler)
