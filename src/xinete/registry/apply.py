# src/xinete/registry/apply.py
from __future__ import annotations

"""
Registry apply semantics.

Deterministic state transitions for:
- CONTENT_STORE   (NonExistent -> Active)
- CONTENT_UPDATE  (Active(old) -> NonExistent(old) + Active(new))
- CONTENT_REMOVE  (Active -> NonExistent)

apply_tx() runs against a private copy of the state owned by the ledger. Every
precondition is checked before the first write, so a raised error never leaves
a half-applied copy behind even if a backend were to reuse it.

Removed identifiers and hashes are free again immediately: anyone may
register them afterwards (there is no tombstone).
"""

from typing import Any, Dict, List, Tuple

from xinete.errors import AuthorizationError, ConflictError, ValidationError
from xinete.registry.types import (
    TX_REMOVE,
    TX_STORE,
    TX_UPDATE,
    Removed,
    Stored,
    TxEnvelope,
    Updated,
)
from xinete.runtime.state_invariants import ensure_state

Json = Dict[str, Any]


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _as_str(x: Any) -> str:
    return x if isinstance(x, str) else ""


def _registry(state: Json) -> Json:
    return ensure_state(state)["registry"]


def _require_text(payload: Json, key: str) -> str:
    v = _as_str(payload.get(key)).strip()
    if not v:
        raise ValidationError(f"empty_{key}", {"field": key})
    return v


def _require_signer(env: TxEnvelope) -> str:
    signer = _as_str(env.signer).strip()
    if not signer:
        raise ValidationError("empty_owner", {})
    return signer


def _check_and_bump_nonce(state: Json, env: TxEnvelope) -> None:
    """Signed envelopes carry nonce >= 1 and must be strictly sequential.

    Direct calls (nonce == 0) are attributed by the caller and do not consume
    a nonce.
    """
    if int(env.nonce) <= 0:
        return
    accounts = ensure_state(state)["accounts"]
    acct = accounts.get(env.signer)
    if not isinstance(acct, dict):
        acct = {"nonce": 0}
        accounts[env.signer] = acct
    want = int(acct.get("nonce") or 0) + 1
    if int(env.nonce) != want:
        raise ValidationError("bad_nonce", {"expected": want, "got": int(env.nonce)})
    acct["nonce"] = int(env.nonce)


def _swap_remove(seq: List[str], identifier: str) -> None:
    """Remove identifier by moving the last element into its slot (order not kept)."""
    i = seq.index(identifier)
    last = seq.pop()
    if i < len(seq):
        seq[i] = last


def _owner_seq(reg: Json, owner: str) -> List[str]:
    by_owner = reg["by_owner"]
    seq = by_owner.get(owner)
    if not isinstance(seq, list):
        seq = []
        by_owner[owner] = seq
    return seq


def _drop_owner_if_empty(reg: Json, owner: str) -> None:
    if not reg["by_owner"].get(owner):
        reg["by_owner"].pop(owner, None)


def _new_record(identifier: str, integrity_hash: str, owner: str, ts_ms: int, payload: Json) -> Json:
    return {
        "identifier": identifier,
        "integrity_hash": integrity_hash,
        "owner": owner,
        "created_at": int(ts_ms),
        "display_name": _as_str(payload.get("display_name")),
        "media_ref": _as_str(payload.get("media_ref")),
    }


# ---------------------------
# Store
# ---------------------------


def _apply_store(state: Json, env: TxEnvelope, ts_ms: int) -> Tuple[Json, List[Json]]:
    payload = _as_dict(env.payload)
    owner = _require_signer(env)
    identifier = _require_text(payload, "identifier")
    integrity_hash = _require_text(payload, "integrity_hash")

    reg = _registry(state)
    records = reg["records"]
    by_hash = reg["by_hash"]

    if identifier in records:
        raise ConflictError("identifier_exists", {"identifier": identifier})
    if integrity_hash in by_hash:
        raise ConflictError("hash_exists", {"integrity_hash": integrity_hash})

    _check_and_bump_nonce(state, env)

    rec = _new_record(identifier, integrity_hash, owner, ts_ms, payload)
    records[identifier] = rec
    by_hash[integrity_hash] = identifier
    _owner_seq(reg, owner).append(identifier)

    ev = Stored(
        owner=owner,
        identifier=identifier,
        integrity_hash=integrity_hash,
        display_name=rec["display_name"],
        timestamp=int(ts_ms),
    )
    return {"applied": TX_STORE, "identifier": identifier}, [ev.to_json()]


# ---------------------------
# Update
# ---------------------------


def _apply_update(state: Json, env: TxEnvelope, ts_ms: int) -> Tuple[Json, List[Json]]:
    payload = _as_dict(env.payload)
    owner = _require_signer(env)
    old_id = _require_text(payload, "old_identifier")
    new_id = _require_text(payload, "new_identifier")
    new_hash = _require_text(payload, "new_hash")

    reg = _registry(state)
    records = reg["records"]
    by_hash = reg["by_hash"]

    old = records.get(old_id)
    if not isinstance(old, dict) or old.get("owner") != owner:
        raise AuthorizationError("not_owner", {"identifier": old_id})

    if new_id != old_id and new_id in records:
        raise ConflictError("identifier_exists", {"identifier": new_id})

    bound = by_hash.get(new_hash)
    if bound is not None and bound != old_id:
        raise ConflictError("hash_exists", {"integrity_hash": new_hash})

    _check_and_bump_nonce(state, env)

    old_hash = _as_str(old.get("integrity_hash"))
    del records[old_id]
    if by_hash.get(old_hash) == old_id:
        del by_hash[old_hash]

    records[new_id] = _new_record(new_id, new_hash, owner, ts_ms, payload)
    by_hash[new_hash] = new_id

    seq = _owner_seq(reg, owner)
    if old_id in seq:
        seq[seq.index(old_id)] = new_id
    else:
        seq.append(new_id)

    ev = Updated(owner=owner, old_identifier=old_id, new_identifier=new_id, new_hash=new_hash)
    return {"applied": TX_UPDATE, "old_identifier": old_id, "identifier": new_id}, [ev.to_json()]


# ---------------------------
# Remove
# ---------------------------


def _apply_remove(state: Json, env: TxEnvelope, ts_ms: int) -> Tuple[Json, List[Json]]:
    payload = _as_dict(env.payload)
    owner = _require_signer(env)
    identifier = _require_text(payload, "identifier")

    reg = _registry(state)
    records = reg["records"]
    by_hash = reg["by_hash"]

    rec = records.get(identifier)
    if not isinstance(rec, dict) or rec.get("owner") != owner:
        raise AuthorizationError("not_owner", {"identifier": identifier})

    _check_and_bump_nonce(state, env)

    h = _as_str(rec.get("integrity_hash"))
    del records[identifier]
    if by_hash.get(h) == identifier:
        del by_hash[h]

    seq = _owner_seq(reg, owner)
    if identifier in seq:
        _swap_remove(seq, identifier)
    _drop_owner_if_empty(reg, owner)

    ev = Removed(owner=owner, identifier=identifier)
    return {"applied": TX_REMOVE, "identifier": identifier}, [ev.to_json()]


_HANDLERS = {
    TX_STORE: _apply_store,
    TX_UPDATE: _apply_update,
    TX_REMOVE: _apply_remove,
}


def apply_tx(state: Json, env: TxEnvelope, ts_ms: int) -> Tuple[Json, List[Json]]:
    """Apply one registry transaction. Returns (result, events-as-json)."""
    fn = _HANDLERS.get(str(env.tx_type).strip().upper())
    if fn is None:
        raise ValidationError("unknown_tx_type", {"tx_type": env.tx_type})
    return fn(state, env, int(ts_ms))


__all__ = ["apply_tx"]
