# src/xinete/api/routes_public_parts/registry.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request

from xinete.api.errors import ApiError
from xinete.api.routes_public_parts.common import Json, _ctx, _int_param
from xinete.api.schemas import TxEnvelopeRequest
from xinete.util.integrity import digest, is_digest

router = APIRouter()


@router.post("/registry/tx")
def registry_tx(request: Request, body: TxEnvelopeRequest) -> Json:
    """Commit a signed store/update/remove envelope.

    Returns { ok, receipt: {height, ts_ms, tx_type, signer, result, events} }.
    Registry errors map to 400/403/404/409.
    """
    receipt = _ctx(request).registry.submit(body.model_dump())
    return {"ok": True, "receipt": receipt.to_json()}


@router.get("/registry/records/{identifier}")
def registry_record(request: Request, identifier: str) -> Json:
    rec = _ctx(request).registry.get_record(identifier)
    return {"ok": True, "record": rec.to_json()}


@router.get("/registry/owner/{identifier}")
def registry_owner(request: Request, identifier: str) -> Json:
    owner = _ctx(request).registry.owner_of(identifier)
    if not owner:
        raise ApiError.not_found("record_not_found", "identifier is not registered", {"identifier": identifier})
    return {"ok": True, "identifier": identifier, "owner": owner}


@router.get("/registry/hash/{integrity_hash}")
def registry_by_hash(request: Request, integrity_hash: str) -> Json:
    # absent hash is not an error: identifier is ""
    ident = _ctx(request).registry.lookup_by_hash(integrity_hash)
    return {"ok": True, "integrity_hash": integrity_hash, "identifier": ident}


@router.get("/registry/owned/{owner}")
def registry_owned(request: Request, owner: str) -> Json:
    items = _ctx(request).registry.list_owned(owner)
    return {"ok": True, "owner": owner, "identifiers": items, "count": len(items)}


@router.get("/registry/verify")
def registry_verify(request: Request, identifier: str, hash: Optional[str] = None) -> Json:
    """Without `hash`, the digest of `identifier` is checked."""
    reg = _ctx(request).registry
    if hash and not is_digest(hash):
        raise ApiError.bad_request("bad_hash", "hash must be 64 lower-case hex characters", {"hash": hash})
    h = hash if hash else digest(identifier)
    return {"ok": True, "identifier": identifier, "integrity_hash": h, "verified": reg.verify(identifier, h)}


@router.get("/registry/log")
def registry_log(request: Request, limit: Optional[int] = None) -> Json:
    n = _int_param(limit, 50)
    reg = _ctx(request).registry
    return {"ok": True, "height": reg.height(), "entries": reg.history(n)}


@router.get("/registry/nonce/{owner}")
def registry_nonce(request: Request, owner: str) -> Json:
    n = _ctx(request).registry.nonce_of(owner)
    return {"ok": True, "owner": owner, "nonce": n, "next_nonce": n + 1}


@router.get("/digest")
def integrity_digest(identifier: str) -> Json:
    ident = str(identifier or "").strip()
    if not ident:
        raise ApiError.bad_request("empty_identifier", "identifier must be non-empty", {})
    return {"ok": True, "identifier": ident, "integrity_hash": digest(ident)}
