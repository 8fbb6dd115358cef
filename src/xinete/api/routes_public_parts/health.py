# src/xinete/api/routes_public_parts/health.py
from __future__ import annotations

import time

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/health")
def v1_health(request: Request) -> dict[str, object]:
    # health must never crash
    ctx = getattr(request.app.state, "ctx", None)
    status = None
    if ctx is not None:
        try:
            status = ctx.status()
        except Exception as e:
            status = {"error": str(e)}
    return {
        "ok": True,
        "service": "xinete",
        "version": "v1",
        "ts_ms": _now_ms(),
        "runtime": status,
    }
