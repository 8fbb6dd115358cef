# src/xinete/storage/pin_coordinator.py
from __future__ import annotations

"""Pin coordination: keep registry-referenced content retrievable.

Three entry points keep content pinned in the store:
  - at upload time (pin requested with the upload + an independent explicit pin),
  - on demand (ensure_pinned / manual_pin),
  - opportunistically on every read (opportunistic_pin_on_read), which makes
    any record a consumer fetches converge to pinned, including records that
    were registered before pinning existed or whose earlier pin failed.

Boundary rule: pin errors stop here. They are logged, counted, optionally
queued for retry, and reported as a boolean. Only a failed *upload* raises
(StoreUnavailable).

Every store call runs under cfg.call_timeout_s. A call that misses the deadline
is a failure (StoreUnavailable for uploads, PinFailure for pins), never a
success; the abandoned call may still finish in the background, which is
harmless because pinning is idempotent.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, TypeVar

from xinete.errors import PinFailure, StoreUnavailable
from xinete.registry.types import ContentRecord
from xinete.runtime.event_log import log_event
from xinete.runtime.metrics import inc_counter
from xinete.storage.content_store import AddResult, ContentStore
from xinete.util.ipfs_cid import extract_cid

log = logging.getLogger("xinete.pins")

T = TypeVar("T")


class PinRetryQueue(Protocol):
    def enqueue_job(self, cid: str, *, reason: str = "") -> Any: ...


@dataclass(frozen=True)
class PinCoordinatorConfig:
    call_timeout_s: float = 10.0
    io_workers: int = 8
    pin_on_read_background: bool = False
    background_workers: int = 2


@dataclass(frozen=True)
class UploadResult:
    identifier: str
    size: int
    pinned: bool
    gateway_url: str = ""

    def to_json(self) -> dict:
        return {
            "identifier": self.identifier,
            "size": int(self.size),
            "pinned": bool(self.pinned),
            "gateway_url": self.gateway_url,
        }


class PinCoordinator:
    def __init__(
        self,
        store: ContentStore,
        cfg: Optional[PinCoordinatorConfig] = None,
        *,
        retry_queue: Optional[PinRetryQueue] = None,
    ) -> None:
        self.store = store
        self.cfg = cfg or PinCoordinatorConfig()
        self._retry = retry_queue
        self._io: Optional[ThreadPoolExecutor] = None
        self._bg: Optional[ThreadPoolExecutor] = None

    # ----------------------------
    # lifecycle
    # ----------------------------

    def initialize(self) -> None:
        if self._io is None:
            self._io = ThreadPoolExecutor(max_workers=max(1, int(self.cfg.io_workers)), thread_name_prefix="xinete-pin-io")
        if self.cfg.pin_on_read_background and self._bg is None:
            self._bg = ThreadPoolExecutor(
                max_workers=max(1, int(self.cfg.background_workers)),
                thread_name_prefix="xinete-pin-bg",
            )

    def close(self) -> None:
        # background hooks first: they submit work to the io pool
        if self._bg is not None:
            self._bg.shutdown(wait=True)
            self._bg = None
        if self._io is not None:
            self._io.shutdown(wait=False, cancel_futures=True)
            self._io = None

    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a store call under the configured deadline.

        Raises FuturesTimeout if the deadline passes and StoreUnavailable if
        the coordinator is not initialized or is being closed.
        """
        pool = self._io
        if pool is None:
            raise StoreUnavailable("pin_coordinator_closed", {})
        timeout = float(self.cfg.call_timeout_s)
        if timeout <= 0:
            return fn(*args, **kwargs)
        try:
            fut = pool.submit(fn, *args, **kwargs)
        except RuntimeError as e:
            # submit after shutdown
            raise StoreUnavailable("pin_coordinator_closed", {"error": str(e)}) from e
        try:
            return fut.result(timeout=timeout)
        except FuturesTimeout:
            fut.cancel()
            raise

    # ----------------------------
    # failure bookkeeping
    # ----------------------------

    def _pin_failed(self, cid: str, err: BaseException, *, source: str) -> None:
        if isinstance(err, FuturesTimeout):
            failure = PinFailure("pin_timeout", {"identifier": cid, "timeout_s": self.cfg.call_timeout_s})
        elif isinstance(err, PinFailure):
            failure = err
        else:
            failure = PinFailure("pin_request_failed", {"identifier": cid, "error": str(err) or type(err).__name__})

        inc_counter("pin_failures_total")
        log_event(
            log,
            "pin_failure",
            level=logging.WARNING,
            identifier=cid,
            source=source,
            reason=failure.reason,
            details=failure.details,
        )

        if self._retry is not None:
            try:
                self._retry.enqueue_job(cid, reason=failure.reason)
            except Exception as e:
                log.warning("could not enqueue pin retry for %s: %s", cid, e)

    # ----------------------------
    # operations
    # ----------------------------

    def upload_and_ensure_pinned(self, data: bytes, name: str = "upload") -> UploadResult:
        """Upload with pin-at-upload, then issue an independent explicit pin.

        The explicit pin is redundancy: if it fails the upload still counts and
        the result carries pinned=False.
        """
        inc_counter("uploads_total")
        try:
            added: AddResult = self._call(self.store.add, data, name=name, pin=True)
        except StoreUnavailable:
            inc_counter("store_unavailable_total")
            raise
        except FuturesTimeout as e:
            inc_counter("store_unavailable_total")
            raise StoreUnavailable("upload_timeout", {"name": name, "timeout_s": self.cfg.call_timeout_s}) from e
        except OSError as e:
            inc_counter("store_unavailable_total")
            raise StoreUnavailable("upload_failed", {"name": name, "error": str(e)}) from e

        pinned = True
        try:
            inc_counter("pin_requests_total")
            self._call(self.store.pin, added.identifier)
        except Exception as e:
            pinned = False
            self._pin_failed(added.identifier, e, source="upload")

        log_event(log, "upload", identifier=added.identifier, size=int(added.size), pinned=pinned, name=name)
        return UploadResult(
            identifier=added.identifier,
            size=int(added.size),
            pinned=pinned,
            gateway_url=self.store.gateway_url(added.identifier),
        )

    def read(self, identifier: str) -> bytes:
        """Read full content under the deadline. Raises StoreUnavailable."""
        cid = str(identifier or "").strip()

        def _read_all() -> bytes:
            return b"".join(self.store.get(cid))

        try:
            return self._call(_read_all)
        except FuturesTimeout as e:
            inc_counter("store_unavailable_total")
            raise StoreUnavailable("read_timeout", {"identifier": cid, "timeout_s": self.cfg.call_timeout_s}) from e
        except StoreUnavailable:
            inc_counter("store_unavailable_total")
            raise
        except OSError as e:
            inc_counter("store_unavailable_total")
            raise StoreUnavailable("read_failed", {"identifier": cid, "error": str(e)}) from e

    def ensure_pinned(self, identifier: str, *, source: str = "ensure") -> bool:
        """Idempotent check-then-pin. Never raises.

        Already pinned -> True with no further I/O. Otherwise one pin request;
        returns whether it was acknowledged. A failed status check is treated
        as "not pinned" and falls through to the pin request.
        """
        cid = str(identifier or "").strip()
        if not cid:
            return False

        try:
            if self._call(self.store.is_pinned, cid):
                inc_counter("pins_already_present_total")
                return True
        except Exception as e:
            inc_counter("pin_status_failures_total")
            log_event(log, "pin_status_unknown", level=logging.WARNING, identifier=cid, source=source, error=str(e))

        try:
            inc_counter("pin_requests_total")
            self._call(self.store.pin, cid)
        except Exception as e:
            self._pin_failed(cid, e, source=source)
            return False

        log_event(log, "pinned", identifier=cid, source=source)
        return True

    def manual_pin(self, identifier: str) -> bool:
        """User-invoked "pin this now"; same contract as ensure_pinned."""
        inc_counter("manual_pins_total")
        return self.ensure_pinned(identifier, source="manual")

    @staticmethod
    def read_targets(record: ContentRecord, payload: Any = None) -> List[str]:
        """Identifiers a read should keep pinned: the record itself + nested refs."""
        out: List[str] = []
        seen = set()

        def _add(cid: str) -> None:
            if cid and cid not in seen:
                seen.add(cid)
                out.append(cid)

        _add(str(record.identifier or "").strip())
        _add(extract_cid(record.media_ref, strict=False))
        if isinstance(payload, dict):
            _add(extract_cid(payload.get("image"), strict=False))
        return out

    def _pin_on_read(self, targets: List[str]) -> None:
        for cid in targets:
            self.ensure_pinned(cid, source="read")

    def opportunistic_pin_on_read(self, record: ContentRecord, payload: Any = None) -> None:
        """Post-fetch hook: make sure a record that was just read stays pinned."""
        try:
            targets = self.read_targets(record, payload)
            if self._bg is not None:
                self._bg.submit(self._pin_on_read, targets)
                return
            self._pin_on_read(targets)
        except Exception as e:
            # ensure_pinned never raises; this only guards dispatch (e.g. pool shut down)
            log_event(log, "pin_on_read_skipped", level=logging.WARNING, identifier=record.identifier, error=str(e))
