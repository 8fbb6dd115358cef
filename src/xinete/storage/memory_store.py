# src/xinete/storage/memory_store.py
from __future__ import annotations

"""In-memory content store.

Deterministic, offline and thread-safe. Identifiers are CIDv1-shaped strings
derived from sha256(content), so uploading the same bytes twice yields the
same identifier (as in a real content-addressed store).

Failure switches let tests model a flaky store:
  fail_uploads / fail_reads -> StoreUnavailable
  fail_pins / fail_status   -> PinFailure
  delay_s                   -> every call sleeps first (deadline tests)
"""

import base64
import hashlib
import threading
import time
from typing import Dict, Iterator, List, Set

from xinete.errors import PinFailure, StoreUnavailable
from xinete.storage.content_store import AddResult


def content_cid(data: bytes) -> str:
    b32 = base64.b32encode(hashlib.sha256(data).digest()).decode("ascii").lower().rstrip("=")
    return f"bafkrei{b32}"


class MemoryContentStore:
    def __init__(self, *, gateway_base: str = "http://127.0.0.1:8080") -> None:
        self.gateway_base = gateway_base.rstrip("/")
        self._lock = threading.Lock()
        self._blobs: Dict[str, bytes] = {}
        self._pinned: Set[str] = set()

        self.fail_uploads = False
        self.fail_reads = False
        self.fail_pins = False
        self.fail_status = False
        self.delay_s = 0.0

        # observability for tests
        self.pin_requests: List[str] = []
        self.status_checks: List[str] = []
        self.pin_transitions: Dict[str, int] = {}
        self._open = False

    def initialize(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def _enter(self) -> None:
        if not self._open:
            raise RuntimeError("content_store_not_initialized")
        if self.delay_s > 0:
            time.sleep(self.delay_s)

    def _mark_pinned(self, cid: str) -> None:
        if cid not in self._pinned:
            self._pinned.add(cid)
            self.pin_transitions[cid] = self.pin_transitions.get(cid, 0) + 1

    def gateway_url(self, identifier: str) -> str:
        cid = (identifier or "").strip()
        return f"{self.gateway_base}/ipfs/{cid}" if cid else ""

    def put(self, data: bytes, *, pinned: bool = False) -> str:
        """Seed content directly (e.g. content registered before pinning existed)."""
        cid = content_cid(data)
        with self._lock:
            self._blobs[cid] = bytes(data)
            if pinned:
                self._mark_pinned(cid)
        return cid

    def unpin(self, identifier: str) -> None:
        with self._lock:
            self._pinned.discard(identifier)

    def add(self, data: bytes, *, name: str, pin: bool) -> AddResult:
        self._enter()
        if self.fail_uploads:
            raise StoreUnavailable("store_offline", {"op": "add", "name": name})
        cid = content_cid(data)
        with self._lock:
            self._blobs[cid] = bytes(data)
            if pin and not self.fail_pins:
                self._mark_pinned(cid)
        return AddResult(identifier=cid, size=len(data))

    def pin(self, identifier: str) -> None:
        self._enter()
        with self._lock:
            self.pin_requests.append(identifier)
            if self.fail_pins:
                raise PinFailure("pin_rejected", {"identifier": identifier})
            self._mark_pinned(identifier)

    def is_pinned(self, identifier: str) -> bool:
        self._enter()
        with self._lock:
            self.status_checks.append(identifier)
            if self.fail_status:
                raise PinFailure("pin_status_failed", {"identifier": identifier})
            return identifier in self._pinned

    def get(self, identifier: str) -> Iterator[bytes]:
        self._enter()
        if self.fail_reads:
            raise StoreUnavailable("store_offline", {"op": "get", "identifier": identifier})
        with self._lock:
            data = self._blobs.get(identifier)
        if data is None:
            raise StoreUnavailable("content_unavailable", {"identifier": identifier})
        return iter([data[i : i + 4096] for i in range(0, len(data), 4096)] or [b""])
