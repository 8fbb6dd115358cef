# src/xinete/services/catalog.py
from __future__ import annotations

"""Catalog flows built on the registry and the pin coordinator.

Producer side (publish): media bytes -> pinned upload -> metadata document
{name, description, image: "ipfs://<media>", attributes} -> pinned upload ->
registry.store(metadata identifier, digest(metadata identifier)).

Consumer side (fetch / collection): record lookup -> content read -> the
post-fetch pin hook, so everything a consumer reads converges to pinned.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from xinete.errors import NotFoundError, XineteError
from xinete.registry.registry import MetadataRegistry
from xinete.registry.types import ContentRecord
from xinete.runtime.event_log import log_event
from xinete.runtime.metrics import inc_counter
from xinete.storage.pin_coordinator import PinCoordinator, UploadResult
from xinete.util.integrity import digest, matches

Json = Dict[str, Any]

log = logging.getLogger("xinete.catalog")


def decode_payload(raw: bytes) -> Any:
    """JSON when the bytes parse as JSON, otherwise text."""
    txt = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(txt)
    except ValueError:
        return txt


@dataclass(frozen=True)
class PublishResult:
    identifier: str
    integrity_hash: str
    media_identifier: str
    media_ref: str
    pinned: bool
    media_pinned: bool
    height: int

    def to_json(self) -> Json:
        return {
            "identifier": self.identifier,
            "integrity_hash": self.integrity_hash,
            "media_identifier": self.media_identifier,
            "media_ref": self.media_ref,
            "pinned": bool(self.pinned),
            "media_pinned": bool(self.media_pinned),
            "height": int(self.height),
        }


@dataclass(frozen=True)
class CatalogItem:
    record: ContentRecord
    payload: Any = None

    def to_json(self) -> Json:
        return {"record": self.record.to_json(), "payload": self.payload}


class CatalogService:
    def __init__(self, registry: MetadataRegistry, pins: PinCoordinator) -> None:
        self.registry = registry
        self.pins = pins

    def publish_json(self, document: Any, name: str = "metadata.json") -> UploadResult:
        raw = json.dumps(document, sort_keys=True, ensure_ascii=False).encode("utf-8")
        return self.pins.upload_and_ensure_pinned(raw, name)

    def publish(
        self,
        owner: str,
        data: bytes,
        name: str,
        *,
        display_name: str = "",
        description: str = "",
        attributes: Optional[List[Any]] = None,
    ) -> PublishResult:
        """Upload media + metadata and register the metadata identifier.

        Store failures raise StoreUnavailable before anything is registered.
        Registry errors propagate unchanged; the uploaded content stays in the
        store (content addressing makes a later retry reuse it).
        """
        title = str(display_name or name or "").strip()
        media = self.pins.upload_and_ensure_pinned(data, name)
        media_ref = f"ipfs://{media.identifier}"

        meta = self.publish_json(
            {
                "name": title,
                "description": str(description or ""),
                "image": media_ref,
                "attributes": list(attributes or []),
            },
            name=f"{name}.json" if name else "metadata.json",
        )
        h = digest(meta.identifier)
        receipt = self.registry.store(owner, meta.identifier, h, display_name=title, media_ref=media_ref)

        inc_counter("catalog_published_total")
        log_event(log, "catalog_published", owner=owner, identifier=meta.identifier, media=media.identifier)
        return PublishResult(
            identifier=meta.identifier,
            integrity_hash=h,
            media_identifier=media.identifier,
            media_ref=media_ref,
            pinned=meta.pinned,
            media_pinned=media.pinned,
            height=receipt.height,
        )

    def fetch(self, identifier: str) -> CatalogItem:
        record = self.registry.get_record(identifier)
        payload = decode_payload(self.pins.read(record.identifier))
        self.pins.opportunistic_pin_on_read(record, payload)
        return CatalogItem(record=record, payload=payload)

    def collection(self, owner: str, limit: Optional[int] = None) -> List[CatalogItem]:
        """Items `owner` holds, in list_owned order. Unreadable items are skipped.

        Only the first `limit` identifiers are read from the store.
        """
        idents = self.registry.list_owned(owner)
        if limit is not None:
            idents = idents[: max(0, int(limit))]
        out: List[CatalogItem] = []
        for ident in idents:
            try:
                out.append(self.fetch(ident))
            except XineteError as e:
                inc_counter("catalog_skipped_total")
                log_event(log, "catalog_item_skipped", level=logging.WARNING, owner=owner, identifier=ident, error=str(e))
        return out

    def verify_identifier(self, identifier: str) -> bool:
        """Recompute the digest, compare it to the stored one, then registry.verify."""
        ident = str(identifier or "").strip()
        if not ident:
            return False
        try:
            record = self.registry.get_record(ident)
        except NotFoundError:
            return False
        if not matches(ident, record.integrity_hash):
            return False
        return self.registry.verify(ident, record.integrity_hash)
