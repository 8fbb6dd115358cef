# src/xinete/registry/registry.py
from __future__ import annotations

"""MetadataRegistry: the only component allowed to mutate registry indices.

Mutations are turned into TxEnvelopes and committed through the ledger; reads
go against a ledger snapshot. Registry errors (ValidationError, ConflictError,
AuthorizationError, NotFoundError) are raised to the caller unchanged and are
never retried here.
"""

import dataclasses
import logging
import threading
from typing import Any, Callable, Dict, List

from xinete.crypto.sig import canonical_tx_message, normalize_public_key, verify_ed25519_signature
from xinete.errors import AuthorizationError, NotFoundError, ValidationError, XineteError
from xinete.registry.apply import apply_tx
from xinete.registry.ledger import Ledger
from xinete.registry.types import (
    TX_REMOVE,
    TX_STORE,
    TX_TYPES,
    TX_UPDATE,
    ContentRecord,
    Receipt,
    RegistryEvent,
    TxEnvelope,
)
from xinete.runtime.event_log import log_event
from xinete.runtime.metrics import inc_counter

Json = Dict[str, Any]
Subscriber = Callable[[RegistryEvent], None]

log = logging.getLogger("xinete.registry")


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _registry_view(st: Json) -> Json:
    return _as_dict(st.get("registry"))


class MetadataRegistry:
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger
        self._subs: List[Subscriber] = []
        self._subs_lock = threading.Lock()
        # held across commit + publish so subscribers see events in commit order
        self._commit_lock = threading.RLock()

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    # ----------------------------
    # Events
    # ----------------------------

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register an event subscriber. Returns an unsubscribe callable.

        Subscribers run synchronously after each commit, in commit order, while
        the registry holds its commit lock; slow subscribers delay writers.
        """
        with self._subs_lock:
            self._subs.append(fn)

        def _unsubscribe() -> None:
            with self._subs_lock:
                if fn in self._subs:
                    self._subs.remove(fn)

        return _unsubscribe

    def _publish(self, receipt: Receipt) -> None:
        with self._subs_lock:
            subs = list(self._subs)
        for ev in receipt.events:
            for fn in subs:
                try:
                    fn(ev)
                except Exception as e:
                    # The commit already happened; a broken subscriber must not undo it.
                    log.exception("registry subscriber failed: %s", e)

    # ----------------------------
    # Mutations
    # ----------------------------

    def _commit(self, env: TxEnvelope) -> Receipt:
        with self._commit_lock:
            return self._commit_locked(env)

    def _commit_locked(self, env: TxEnvelope) -> Receipt:
        try:
            receipt = self._ledger.commit(env, apply_tx)
        except XineteError as e:
            inc_counter("registry_rejected_total")
            log_event(
                log,
                "registry_rejected",
                level=logging.WARNING,
                tx_type=env.tx_type,
                signer=env.signer,
                code=e.code,
                reason=e.reason,
            )
            raise

        inc_counter("registry_commits_total")
        log_event(
            log,
            "registry_commit",
            tx_type=env.tx_type,
            signer=env.signer,
            height=receipt.height,
            result=receipt.result,
        )
        self._publish(receipt)
        return receipt

    def store(
        self,
        caller: str,
        identifier: str,
        integrity_hash: str,
        display_name: str = "",
        media_ref: str = "",
    ) -> Receipt:
        env = TxEnvelope(
            tx_type=TX_STORE,
            signer=str(caller or "").strip(),
            nonce=0,
            payload={
                "identifier": identifier,
                "integrity_hash": integrity_hash,
                "display_name": display_name,
                "media_ref": media_ref,
            },
        )
        return self._commit(env)

    def update(
        self,
        caller: str,
        old_identifier: str,
        new_identifier: str,
        new_hash: str,
        display_name: str = "",
        media_ref: str = "",
    ) -> Receipt:
        env = TxEnvelope(
            tx_type=TX_UPDATE,
            signer=str(caller or "").strip(),
            nonce=0,
            payload={
                "old_identifier": old_identifier,
                "new_identifier": new_identifier,
                "new_hash": new_hash,
                "display_name": display_name,
                "media_ref": media_ref,
            },
        )
        return self._commit(env)

    def remove(self, caller: str, identifier: str) -> Receipt:
        env = TxEnvelope(
            tx_type=TX_REMOVE,
            signer=str(caller or "").strip(),
            nonce=0,
            payload={"identifier": identifier},
        )
        return self._commit(env)

    def submit(self, envelope: Any) -> Receipt:
        """Commit a signed envelope {tx_type, signer, nonce, payload, sig}.

        signer is the Ed25519 public key of the owner (hex or base64); records
        and nonces are attributed to its lower-case hex form. nonce must be the
        signer's last committed nonce + 1.
        """
        try:
            env = TxEnvelope.from_json(envelope)
        except (TypeError, ValueError) as e:
            raise ValidationError("bad_envelope", {"error": str(e)}) from e

        if env.tx_type not in TX_TYPES:
            raise ValidationError("unknown_tx_type", {"tx_type": env.tx_type})
        if not env.signer:
            raise ValidationError("empty_owner", {})
        if int(env.nonce) < 1:
            raise ValidationError("bad_nonce", {"got": int(env.nonce)})
        if not env.sig:
            raise AuthorizationError("missing_signature", {})

        msg = canonical_tx_message(tx_type=env.tx_type, signer=env.signer, nonce=env.nonce, payload=env.payload)
        if not verify_ed25519_signature(message=msg, sig=env.sig, pubkey=env.signer):
            inc_counter("registry_bad_signature_total")
            raise AuthorizationError("invalid_signature", {"signer": env.signer})

        # the signature covers the signer as sent; ownership and nonces use the canonical key
        env = dataclasses.replace(env, signer=normalize_public_key(env.signer))
        return self._commit(env)

    # ----------------------------
    # Queries (never mutate)
    # ----------------------------

    def _snapshot(self) -> Json:
        return self._ledger.read()

    def lookup_by_hash(self, integrity_hash: str) -> str:
        h = str(integrity_hash or "").strip()
        if not h:
            return ""
        by_hash = _as_dict(_registry_view(self._snapshot()).get("by_hash"))
        v = by_hash.get(h)
        return v if isinstance(v, str) else ""

    def list_owned(self, owner: str) -> List[str]:
        o = str(owner or "").strip()
        if not o:
            return []
        seq = _as_dict(_registry_view(self._snapshot()).get("by_owner")).get(o)
        if not isinstance(seq, list):
            return []
        return [str(x) for x in seq]

    def owner_of(self, identifier: str) -> str:
        rec = _as_dict(_as_dict(_registry_view(self._snapshot()).get("records")).get(str(identifier or "").strip()))
        return str(rec.get("owner") or "")

    def get_record(self, identifier: str) -> ContentRecord:
        ident = str(identifier or "").strip()
        rec = _as_dict(_registry_view(self._snapshot()).get("records")).get(ident) if ident else None
        if not isinstance(rec, dict):
            raise NotFoundError("record_not_found", {"identifier": ident})
        return ContentRecord.from_json(rec)

    def verify(self, identifier: str, integrity_hash: str) -> bool:
        """True iff `identifier` is active and by_hash[integrity_hash] == identifier."""
        try:
            ident = str(identifier or "").strip()
            h = str(integrity_hash or "").strip()
            if not ident or not h:
                return False
            reg = _registry_view(self._snapshot())
            rec = _as_dict(reg.get("records")).get(ident)
            if not isinstance(rec, dict):
                return False
            return _as_dict(reg.get("by_hash")).get(h) == ident
        except Exception as e:
            log_event(log, "registry_verify_degraded", level=logging.WARNING, identifier=str(identifier), error=str(e))
            return False

    def history(self, limit: int = 100) -> List[Json]:
        return self._ledger.log(limit)

    def height(self) -> int:
        try:
            return int(self._snapshot().get("height") or 0)
        except (TypeError, ValueError):
            return 0

    def nonce_of(self, owner: str) -> int:
        acct = _as_dict(_as_dict(self._snapshot().get("accounts")).get(str(owner or "").strip()))
        try:
            return int(acct.get("nonce") or 0)
        except (TypeError, ValueError):
            return 0
