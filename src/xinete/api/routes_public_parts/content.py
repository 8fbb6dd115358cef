# src/xinete/api/routes_public_parts/content.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request

from xinete.api.routes_public_parts.common import Json, _ctx, _int_param

router = APIRouter()


@router.get("/content/{identifier}")
def content_get(request: Request, identifier: str) -> Json:
    """Registered record + decoded content. Reading triggers the pin-on-read hook."""
    item = _ctx(request).catalog.fetch(identifier)
    out: Json = {"ok": True}
    out.update(item.to_json())
    return out


@router.get("/content/{identifier}/verify")
def content_verify(request: Request, identifier: str) -> Json:
    return {"ok": True, "identifier": identifier, "verified": _ctx(request).catalog.verify_identifier(identifier)}


@router.get("/collection/{owner}")
def collection_get(request: Request, owner: str, limit: Optional[int] = None) -> Json:
    ctx = _ctx(request)
    n = _int_param(limit, 100)
    items = ctx.catalog.collection(owner, limit=n)
    # count is the full holding, items only the first n readable ones
    count = len(ctx.registry.list_owned(owner))
    return {"ok": True, "owner": owner, "items": [it.to_json() for it in items], "count": count}
