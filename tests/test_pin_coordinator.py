from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List, Tuple

import pytest

from xinete.errors import StoreUnavailable
from xinete.registry.types import ContentRecord
from xinete.runtime.metrics import get_counter
from xinete.storage.memory_store import MemoryContentStore, content_cid
from xinete.storage.pin_coordinator import PinCoordinator, PinCoordinatorConfig


class _RecordingQueue:
    def __init__(self) -> None:
        self.jobs: List[Tuple[str, str]] = []

    def enqueue_job(self, cid: str, *, reason: str = "") -> dict:
        self.jobs.append((cid, reason))
        return {"ok": True}


def _record(identifier: str, media_ref: str = "") -> ContentRecord:
    return ContentRecord(identifier=identifier, integrity_hash="h", owner="alice", created_at=1, media_ref=media_ref)


@pytest.fixture
def slow_pins(mem_store: MemoryContentStore) -> Iterator[PinCoordinator]:
    pc = PinCoordinator(mem_store, PinCoordinatorConfig(call_timeout_s=0.05))
    pc.initialize()
    yield pc
    pc.close()


def test_upload_pins_and_reports_gateway(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    res = pins.upload_and_ensure_pinned(b"hello world", "hello.txt")

    assert res.identifier == content_cid(b"hello world")
    assert res.size == 11
    assert res.pinned is True
    assert res.gateway_url == f"http://gw.test/ipfs/{res.identifier}"
    assert mem_store.is_pinned(res.identifier)
    # explicit redundant pin was issued on top of pin-at-upload
    assert mem_store.pin_requests == [res.identifier]
    assert mem_store.pin_transitions[res.identifier] == 1


def test_upload_with_failing_pins_returns_unpinned(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    mem_store.fail_pins = True

    res = pins.upload_and_ensure_pinned(b"payload", "p.bin")

    assert res.identifier == content_cid(b"payload")
    assert res.size == 7
    assert res.pinned is False
    assert get_counter("pin_failures_total") == 1


def test_upload_failure_raises_store_unavailable(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    mem_store.fail_uploads = True
    with pytest.raises(StoreUnavailable):
        pins.upload_and_ensure_pinned(b"x", "x")
    assert get_counter("store_unavailable_total") == 1


def test_ensure_pinned_is_idempotent(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    cid = mem_store.put(b"legacy content")
    assert not mem_store.is_pinned(cid)

    assert pins.ensure_pinned(cid) is True
    assert pins.ensure_pinned(cid) is True

    assert mem_store.pin_transitions[cid] == 1
    assert mem_store.pin_requests == [cid]
    assert get_counter("pins_already_present_total") == 1


def test_ensure_pinned_never_raises(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    cid = mem_store.put(b"data")
    mem_store.fail_pins = True
    assert pins.ensure_pinned(cid) is False
    assert pins.ensure_pinned("") is False

    mem_store.close()
    assert pins.ensure_pinned(cid) is False


def test_status_failure_falls_through_to_pin(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    cid = mem_store.put(b"data")
    mem_store.fail_status = True
    assert pins.ensure_pinned(cid) is True
    assert mem_store.pin_requests == [cid]
    assert get_counter("pin_status_failures_total") == 1


def test_deadline_turns_slow_pin_into_failure(slow_pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    cid = mem_store.put(b"data")
    mem_store.delay_s = 0.3
    assert slow_pins.ensure_pinned(cid) is False
    assert get_counter("pin_failures_total") == 1


def test_deadline_turns_slow_upload_into_store_unavailable(slow_pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    mem_store.delay_s = 0.3
    with pytest.raises(StoreUnavailable) as ei:
        slow_pins.upload_and_ensure_pinned(b"data", "d")
    assert ei.value.reason == "upload_timeout"


def test_read_returns_bytes_and_maps_failures(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    data = b"x" * 10_000
    cid = mem_store.put(data)
    assert pins.read(cid) == data

    with pytest.raises(StoreUnavailable):
        pins.read("bafyMissing")

    mem_store.fail_reads = True
    with pytest.raises(StoreUnavailable):
        pins.read(cid)


def test_pin_on_read_pins_record_and_nested_refs(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    img = mem_store.put(b"image bytes")
    thumb = mem_store.put(b"thumb bytes")
    meta = mem_store.put(b'{"name": "demo"}')

    rec = _record(meta, media_ref=f"ipfs://{thumb}")
    pins.opportunistic_pin_on_read(rec, {"name": "demo", "image": f"ipfs://{img}"})

    for cid in (meta, thumb, img):
        assert mem_store.is_pinned(cid)


def test_pin_on_read_lenient_identifiers(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    rec = _record("bafyAAA", media_ref="bafyIMG")
    assert PinCoordinator.read_targets(rec) == ["bafyAAA", "bafyIMG"]
    assert PinCoordinator.read_targets(rec, {"image": "https://example.com/a.png"}) == ["bafyAAA", "bafyIMG"]
    assert PinCoordinator.read_targets(_record("bafyAAA", media_ref="bafyAAA")) == ["bafyAAA"]


def test_pin_on_read_swallows_failures(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    mem_store.fail_pins = True
    pins.opportunistic_pin_on_read(_record("bafyAAA", media_ref="bafyIMG"), "plain text payload")
    assert get_counter("pin_failures_total") == 2


def test_pin_on_read_in_background(mem_store: MemoryContentStore) -> None:
    cid = mem_store.put(b"bg")
    pc = PinCoordinator(mem_store, PinCoordinatorConfig(call_timeout_s=2.0, pin_on_read_background=True))
    pc.initialize()
    try:
        pc.opportunistic_pin_on_read(_record(cid))
    finally:
        # close() drains background hooks
        pc.close()
    assert mem_store.is_pinned(cid)


def test_failed_pins_are_queued_for_retry(mem_store: MemoryContentStore) -> None:
    q = _RecordingQueue()
    pc = PinCoordinator(mem_store, PinCoordinatorConfig(call_timeout_s=2.0), retry_queue=q)
    pc.initialize()
    try:
        mem_store.fail_pins = True
        res = pc.upload_and_ensure_pinned(b"data", "d")
        assert pc.manual_pin("bafyOther") is False
    finally:
        pc.close()

    assert q.jobs == [(res.identifier, "pin_rejected"), ("bafyOther", "pin_rejected")]
    assert get_counter("manual_pins_total") == 1


def test_coordinator_requires_initialize(mem_store: MemoryContentStore) -> None:
    pc = PinCoordinator(mem_store)
    with pytest.raises(StoreUnavailable) as ei:
        pc.upload_and_ensure_pinned(b"x", "x")
    assert ei.value.reason == "pin_coordinator_closed"
    # pin paths still never raise
    assert pc.ensure_pinned("bafyA") is False


def test_calls_racing_close_fail_typed(mem_store: MemoryContentStore) -> None:
    pc = PinCoordinator(mem_store, PinCoordinatorConfig(call_timeout_s=2.0))
    pc.initialize()
    # pool already shut down while the coordinator still holds it (close() in flight)
    pc._io.shutdown(wait=True)  # type: ignore[union-attr]
    try:
        with pytest.raises(StoreUnavailable) as ei:
            pc.upload_and_ensure_pinned(b"x", "x")
        assert ei.value.reason == "pin_coordinator_closed"
        with pytest.raises(StoreUnavailable):
            pc.read("bafyA")
        assert pc.ensure_pinned("bafyA") is False
    finally:
        pc.close()

    with pytest.raises(StoreUnavailable):
        pc.upload_and_ensure_pinned(b"x", "x")


def test_ensure_pinned_concurrently_for_distinct_ids(pins: PinCoordinator, mem_store: MemoryContentStore) -> None:
    cids = [mem_store.put(f"item-{i}".encode()) for i in range(32)]

    with ThreadPoolExecutor(max_workers=8) as ex:
        results = list(ex.map(pins.ensure_pinned, cids))

    assert results == [True] * len(cids)
    for cid in cids:
        assert mem_store.is_pinned(cid)
        assert mem_store.pin_transitions[cid] == 1
    assert sorted(mem_store.pin_requests) == sorted(cids)
