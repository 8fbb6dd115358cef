# src/xinete/api/routes_public_parts/media.py
from __future__ import annotations

import re

from fastapi import APIRouter, File, Request, UploadFile

from xinete.api.errors import ApiError
from xinete.api.routes_public_parts.common import Json, _ctx

router = APIRouter()


def _sanitize_filename(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return "upload"
    name = re.sub(r"[^a-zA-Z0-9._-]+", "_", name)
    return name[:128] or "upload"


@router.post("/media/upload")
def media_upload(request: Request, file: UploadFile = File(...)) -> Json:
    """Upload bytes with pin-at-upload plus an explicit redundant pin.

    Returns { ok, identifier, size, pinned, gateway_url, uri }. A failed
    redundant pin still returns 200 with pinned=false; a failed upload is 503.
    """
    ctx = _ctx(request)
    data = file.file.read()
    if not data:
        raise ApiError.bad_request("empty_upload", "uploaded file is empty", {})
    if len(data) > ctx.cfg.max_upload_bytes:
        raise ApiError(413, "request_too_large", "uploaded file too large", {"max_bytes": ctx.cfg.max_upload_bytes})

    res = ctx.pins.upload_and_ensure_pinned(data, _sanitize_filename(file.filename or "upload"))
    out: Json = {"ok": True, "uri": f"ipfs://{res.identifier}"}
    out.update(res.to_json())
    return out


@router.post("/media/pin/{identifier}")
def media_pin(request: Request, identifier: str) -> Json:
    """Manual "pin this now". Always 200; `pinned` reports the outcome."""
    ident = str(identifier or "").strip()
    if not ident:
        raise ApiError.bad_request("empty_identifier", "identifier must be non-empty", {})
    pinned = _ctx(request).pins.manual_pin(ident)
    return {"ok": True, "identifier": ident, "pinned": bool(pinned)}
