from __future__ import annotations

import threading
from pathlib import Path

import pytest

from xinete.errors import ConflictError
from xinete.registry.apply import apply_tx
from xinete.registry.ledger import InvariantViolation, MemoryLedger, SqliteLedger
from xinete.registry.registry import MetadataRegistry
from xinete.registry.types import TX_STORE, TxEnvelope
from xinete.runtime.state_invariants import check_registry_invariants

from conftest import StepClock


def _mk_sqlite(tmp_path: Path, **kw) -> SqliteLedger:
    led = SqliteLedger(db_path=str(tmp_path / "xinete_test.db"), **kw)
    led.initialize()
    return led


def test_ledger_requires_initialize(tmp_path: Path) -> None:
    for led in (MemoryLedger(), SqliteLedger(db_path=str(tmp_path / "x.db"))):
        with pytest.raises(RuntimeError, match="ledger_not_initialized"):
            led.read()


def test_sqlite_state_survives_reopen(tmp_path: Path) -> None:
    led = _mk_sqlite(tmp_path)
    reg = MetadataRegistry(led)
    reg.store("alice", "bafyA", "h1", "demo")
    reg.store("alice", "bafyB", "h2")
    reg.remove("alice", "bafyA")
    led.close()

    led2 = _mk_sqlite(tmp_path)
    reg2 = MetadataRegistry(led2)
    assert reg2.height() == 3
    assert reg2.lookup_by_hash("h2") == "bafyB"
    assert reg2.lookup_by_hash("h1") == ""
    assert reg2.list_owned("alice") == ["bafyB"]
    assert [e["height"] for e in reg2.history(10)] == [3, 2, 1]


def test_sqlite_failed_commit_writes_nothing(tmp_path: Path) -> None:
    led = _mk_sqlite(tmp_path)
    reg = MetadataRegistry(led)
    reg.store("alice", "bafyA", "h1")

    with pytest.raises(ConflictError):
        reg.store("bob", "bafyA", "h9")

    assert reg.height() == 1
    assert len(reg.history(10)) == 1
    with led.db.connection() as con:
        n = con.execute("SELECT COUNT(*) AS n FROM commit_log;").fetchone()["n"]
    assert int(n) == 1


def test_commit_log_omits_signature(tmp_path: Path) -> None:
    led = _mk_sqlite(tmp_path)
    env = TxEnvelope(tx_type=TX_STORE, signer="alice", nonce=0, payload={"identifier": "bafyA", "integrity_hash": "h1"}, sig="deadbeef")
    led.commit(env, apply_tx)
    entry = led.log(1)[0]
    assert "sig" not in entry["tx"]
    assert entry["tx"]["signer"] == "alice"


def test_memory_ledger_rolls_back_on_apply_error(ledger: MemoryLedger) -> None:
    reg = MetadataRegistry(ledger)
    reg.store("alice", "bafyA", "h1")
    before = ledger.read()

    def _half_then_fail(state, env, ts_ms):
        state["registry"]["by_hash"]["junk"] = "bafyJunk"
        raise RuntimeError("boom")

    env = TxEnvelope(tx_type=TX_STORE, signer="alice", nonce=0, payload={})
    with pytest.raises(RuntimeError):
        ledger.commit(env, _half_then_fail)

    assert ledger.read() == before
    assert len(ledger.log(10)) == 1


def test_invariant_check_rejects_corrupting_apply(ledger: MemoryLedger) -> None:
    def _corrupt(state, env, ts_ms):
        state["registry"]["by_hash"]["h-orphan"] = "bafyNowhere"
        return {}, []

    env = TxEnvelope(tx_type=TX_STORE, signer="alice", nonce=0, payload={})
    with pytest.raises(InvariantViolation):
        ledger.commit(env, _corrupt)
    assert ledger.read()["height"] == 0


def test_ledger_clock_never_runs_backwards() -> None:
    times = iter([5000, 4000, 4500])
    led = MemoryLedger(clock=lambda: next(times))
    led.initialize()
    reg = MetadataRegistry(led)
    r1 = reg.store("alice", "a", "h1")
    r2 = reg.store("alice", "b", "h2")
    r3 = reg.store("alice", "c", "h3")
    assert r1.ts_ms == 5000
    assert r2.ts_ms == 5000
    assert r3.ts_ms == 5000


def test_concurrent_stores_of_same_identifier_admit_one(tmp_path: Path) -> None:
    led = _mk_sqlite(tmp_path, clock=StepClock())
    reg = MetadataRegistry(led)

    wins = []
    losses = []
    lock = threading.Lock()

    def _worker(i: int) -> None:
        try:
            reg.store(f"owner{i}", "bafyContested", f"h{i}")
            with lock:
                wins.append(i)
        except ConflictError:
            with lock:
                losses.append(i)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
    assert len(losses) == 7
    assert reg.owner_of("bafyContested") == f"owner{wins[0]}"
    assert check_registry_invariants(led.read()) == []
