"""xinete.registry.types

Value types shared by the registry apply layer, ledger backends and callers:
  - ContentRecord: one registered piece of content
  - Stored / Updated / Removed: domain events emitted by committed mutations
  - TxEnvelope: a caller-attributed mutation request
  - Receipt: what the ledger hands back for a committed transaction
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Tuple, Union

Json = Dict[str, Any]

TX_STORE = "CONTENT_STORE"
TX_UPDATE = "CONTENT_UPDATE"
TX_REMOVE = "CONTENT_REMOVE"

TX_TYPES = (TX_STORE, TX_UPDATE, TX_REMOVE)


@dataclass(frozen=True, slots=True)
class ContentRecord:
    identifier: str
    integrity_hash: str
    owner: str
    created_at: int
    display_name: str = ""
    media_ref: str = ""

    @classmethod
    def from_json(cls, j: Json) -> "ContentRecord":
        return cls(
            identifier=str(j.get("identifier") or ""),
            integrity_hash=str(j.get("integrity_hash") or ""),
            owner=str(j.get("owner") or ""),
            created_at=int(j.get("created_at") or 0),
            display_name=str(j.get("display_name") or ""),
            media_ref=str(j.get("media_ref") or ""),
        )

    def to_json(self) -> Json:
        return {
            "identifier": self.identifier,
            "integrity_hash": self.integrity_hash,
            "owner": self.owner,
            "created_at": int(self.created_at),
            "display_name": self.display_name,
            "media_ref": self.media_ref,
        }

    def to_public_json(self) -> Json:
        """Displayed record shape (owner is served by its own lookup)."""
        return {
            "identifier": self.identifier,
            "integrity_hash": self.integrity_hash,
            "created_at": int(self.created_at),
            "display_name": self.display_name,
            "media_ref": self.media_ref,
        }


@dataclass(frozen=True, slots=True)
class Stored:
    owner: str
    identifier: str
    integrity_hash: str
    display_name: str
    timestamp: int

    kind: ClassVar[str] = "Stored"

    def to_json(self) -> Json:
        return {
            "event": self.kind,
            "owner": self.owner,
            "identifier": self.identifier,
            "integrity_hash": self.integrity_hash,
            "display_name": self.display_name,
            "timestamp": int(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class Updated:
    owner: str
    old_identifier: str
    new_identifier: str
    new_hash: str

    kind: ClassVar[str] = "Updated"

    def to_json(self) -> Json:
        return {
            "event": self.kind,
            "owner": self.owner,
            "old_identifier": self.old_identifier,
            "new_identifier": self.new_identifier,
            "new_hash": self.new_hash,
        }


@dataclass(frozen=True, slots=True)
class Removed:
    owner: str
    identifier: str

    kind: ClassVar[str] = "Removed"

    def to_json(self) -> Json:
        return {"event": self.kind, "owner": self.owner, "identifier": self.identifier}


RegistryEvent = Union[Stored, Updated, Removed]


def event_from_json(j: Json) -> RegistryEvent:
    kind = str(j.get("event") or "")
    if kind == Stored.kind:
        return Stored(
            owner=str(j.get("owner") or ""),
            identifier=str(j.get("identifier") or ""),
            integrity_hash=str(j.get("integrity_hash") or ""),
            display_name=str(j.get("display_name") or ""),
            timestamp=int(j.get("timestamp") or 0),
        )
    if kind == Updated.kind:
        return Updated(
            owner=str(j.get("owner") or ""),
            old_identifier=str(j.get("old_identifier") or ""),
            new_identifier=str(j.get("new_identifier") or ""),
            new_hash=str(j.get("new_hash") or ""),
        )
    if kind == Removed.kind:
        return Removed(owner=str(j.get("owner") or ""), identifier=str(j.get("identifier") or ""))
    raise ValueError(f"unknown registry event: {kind!r}")


@dataclass(frozen=True)
class TxEnvelope:
    tx_type: str
    signer: str
    nonce: int
    payload: Dict[str, Any]
    sig: str = ""

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return TxEnvelope(
            tx_type=str(j.get("tx_type", "")).strip().upper(),
            signer=str(j.get("signer", "")).strip(),
            nonce=int(j.get("nonce", 0) or 0),
            payload=dict(j.get("payload", {}) or {}),
            sig=str(j.get("sig", "") or ""),
        )

    def to_json(self) -> Json:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": self.payload,
            "sig": self.sig,
        }


@dataclass(frozen=True)
class Receipt:
    height: int
    ts_ms: int
    tx_type: str
    signer: str
    result: Json = field(default_factory=dict)
    events: Tuple[RegistryEvent, ...] = ()

    @classmethod
    def from_entry(cls, entry: Json) -> "Receipt":
        tx = entry.get("tx") if isinstance(entry.get("tx"), dict) else {}
        evs: List[RegistryEvent] = []
        for e in entry.get("events") or []:
            if isinstance(e, dict):
                evs.append(event_from_json(e))
        return cls(
            height=int(entry.get("height") or 0),
            ts_ms=int(entry.get("ts_ms") or 0),
            tx_type=str(tx.get("tx_type") or ""),
            signer=str(tx.get("signer") or ""),
            result=dict(entry.get("result") or {}),
            events=tuple(evs),
        )

    def to_json(self) -> Json:
        return {
            "height": self.height,
            "ts_ms": self.ts_ms,
            "tx_type": self.tx_type,
            "signer": self.signer,
            "result": dict(self.result),
            "events": [e.to_json() for e in self.events],
        }
