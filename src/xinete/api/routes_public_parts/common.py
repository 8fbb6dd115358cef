# src/xinete/api/routes_public_parts/common.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from xinete.api.errors import ApiError
from xinete.runtime.context import AppContext

Json = Dict[str, Any]


def _ctx(request: Request) -> AppContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise ApiError.internal("not_ready", "runtime context not attached to app.state", {})
    return ctx


def _int_param(v: Any, default: int, *, lo: int = 1, hi: int = 1000) -> int:
    """Parse an int-ish query param and clamp it to [lo, hi]."""
    if v is None or v == "":
        return int(default)
    try:
        n = int(v)
    except (TypeError, ValueError):
        raise ApiError.bad_request("bad_param", "expected an integer", {"value": str(v)})
    return max(lo, min(hi, n))
