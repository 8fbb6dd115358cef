# src/xinete/api/security.py
from __future__ import annotations

import os
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    - Enforces Content-Length when present.
    - Also caps buffered body size for mutating requests (chunked bodies).
    - Upload routes get their own, larger cap.

    Configure:
      XINETE_MAX_REQUEST_BYTES (default: 1_000_000)
      XINETE_SIZE_LIMIT_DISABLE=1 to disable
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        upload_max_bytes: Optional[int] = None,
        upload_prefixes: Tuple[str, ...] = ("/v1/media/upload",),
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/v1/health"),
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("XINETE_SIZE_LIMIT_DISABLE"))
        self._max_bytes = int(max_bytes) if max_bytes is not None else _env_int("XINETE_MAX_REQUEST_BYTES", 1_000_000)
        self._upload_max_bytes = int(upload_max_bytes) if upload_max_bytes is not None else self._max_bytes
        self._upload_prefixes = upload_prefixes
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self, limit: int) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "ok": False,
                "error": {"code": "request_too_large", "message": "Request body too large", "details": {"max_bytes": limit}},
            },
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        if any(path.startswith(p) for p in self._exempt_prefixes):
            return await call_next(request)

        limit = self._upload_max_bytes if any(path.startswith(p) for p in self._upload_prefixes) else self._max_bytes

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > limit:
                    return self._too_large(limit)
            except ValueError:
                # malformed header: fall back to the buffered body cap
                pass

        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            try:
                body = await request.body()
            except Exception:
                return JSONResponse(
                    status_code=400,
                    content={"ok": False, "error": {"code": "bad_request", "message": "Unable to read request body"}},
                )
            if body and len(body) > limit:
                return self._too_large(limit)

        return await call_next(request)
