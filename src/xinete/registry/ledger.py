# src/xinete/registry/ledger.py
from __future__ import annotations

"""Ledger backends for the registry.

The ledger is the only thing that linearizes registry mutations. A commit:
  1) takes the current state,
  2) runs the apply function on a private copy,
  3) on success swaps the copy in and appends a commit-log entry,
  4) on any exception keeps the old state and writes nothing.

Backends:
  - MemoryLedger: in-process state + explicit commit log (tests, dev)
  - SqliteLedger: durable single-row state + append-only commit_log table

Both carry an explicit initialize()/close() lifecycle; calls outside of it
raise RuntimeError.
"""

import copy
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from xinete.registry.types import Receipt, TxEnvelope
from xinete.runtime.sqlite_db import SqliteDB, _canon_json, load_json_row
from xinete.runtime.state_invariants import check_registry_invariants, ensure_state, initial_state

Json = Dict[str, Any]
ApplyFn = Callable[[Json, TxEnvelope, int], Tuple[Json, List[Json]]]
Clock = Callable[[], int]

_logger = logging.getLogger("xinete.ledger")


def _now_ms() -> int:
    return int(time.time() * 1000)


class InvariantViolation(RuntimeError):
    pass


class Ledger(Protocol):
    def initialize(self) -> None: ...

    def close(self) -> None: ...

    def now_ms(self) -> int: ...

    def read(self) -> Json: ...

    def commit(self, env: TxEnvelope, apply_fn: ApplyFn) -> Receipt: ...

    def log(self, limit: int = 100) -> List[Json]: ...


def _build_entry(height: int, ts_ms: int, env: TxEnvelope, result: Json, events: List[Json]) -> Json:
    tx = env.to_json()
    # signatures are verified before commit; the log keeps the attributed request only
    tx.pop("sig", None)
    return {
        "height": int(height),
        "ts_ms": int(ts_ms),
        "tx": tx,
        "result": dict(result),
        "events": list(events),
    }


def _run_apply(
    state: Json,
    env: TxEnvelope,
    apply_fn: ApplyFn,
    ts_ms: int,
    *,
    check_invariants: bool,
) -> Tuple[Json, Json]:
    """Apply on `state` (already a private copy). Returns (new_state, entry)."""
    ensure_state(state)
    height = int(state.get("height") or 0) + 1
    result, events = apply_fn(state, env, ts_ms)
    state["height"] = height
    state["last_ts_ms"] = int(ts_ms)

    if check_invariants:
        problems = check_registry_invariants(state)
        if problems:
            raise InvariantViolation(f"registry invariants violated: {problems[:10]}")

    return state, _build_entry(height, ts_ms, env, result, events)


class MemoryLedger:
    """In-memory ledger with an explicit commit log.

    The lock stands in for the consensus ordering of a real ledger: commits are
    applied one at a time, in lock acquisition order.
    """

    def __init__(self, *, clock: Optional[Clock] = None, check_invariants: bool = True) -> None:
        self._clock: Clock = clock or _now_ms
        self._check = bool(check_invariants)
        self._lock = threading.RLock()
        self._state: Json = initial_state()
        self._log: List[Json] = []
        self._open = False

    def initialize(self) -> None:
        with self._lock:
            self._open = True

    def close(self) -> None:
        with self._lock:
            self._open = False

    def _require_open(self) -> None:
        if not self._open:
            raise RuntimeError("ledger_not_initialized")

    def now_ms(self) -> int:
        return int(self._clock())

    def read(self) -> Json:
        with self._lock:
            self._require_open()
            return copy.deepcopy(self._state)

    def commit(self, env: TxEnvelope, apply_fn: ApplyFn) -> Receipt:
        with self._lock:
            self._require_open()
            work = copy.deepcopy(self._state)
            # ledger clock never runs backwards
            ts_ms = max(self.now_ms(), int(work.get("last_ts_ms") or 0))
            new_state, entry = _run_apply(work, env, apply_fn, ts_ms, check_invariants=self._check)
            self._state = new_state
            self._log.append(entry)
        return Receipt.from_entry(entry)

    def log(self, limit: int = 100) -> List[Json]:
        with self._lock:
            self._require_open()
            n = max(0, int(limit))
            if n == 0:
                return []
            return copy.deepcopy(self._log[-n:][::-1])


class SqliteLedger:
    """Durable ledger persisted in SQLite.

    registry_state holds the authoritative snapshot as a single row; commit_log
    gets one row per committed transaction, written inside the same
    BEGIN IMMEDIATE transaction as the snapshot.
    """

    def __init__(self, *, db_path: str, clock: Optional[Clock] = None, check_invariants: bool = False) -> None:
        self._db = SqliteDB(path=db_path)
        self._clock: Clock = clock or _now_ms
        self._check = bool(check_invariants)
        self._open = False

    @property
    def db(self) -> SqliteDB:
        return self._db

    def initialize(self) -> None:
        self._db.init_schema()
        with self._db.write_tx() as con:
            row = con.execute("SELECT 1 FROM registry_state WHERE id=1;").fetchone()
            if row is None:
                con.execute(
                    "INSERT INTO registry_state(id, height, state_json, updated_ts_ms) VALUES(1, 0, ?, ?);",
                    (_canon_json(initial_state()), _now_ms()),
                )
        self._open = True

    def close(self) -> None:
        self._open = False

    def _require_open(self) -> None:
        if not self._open:
            raise RuntimeError("ledger_not_initialized")

    def now_ms(self) -> int:
        return int(self._clock())

    def read(self) -> Json:
        self._require_open()
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM registry_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite registry_state is missing")
            return ensure_state(load_json_row(row["state_json"]))

    def commit(self, env: TxEnvelope, apply_fn: ApplyFn) -> Receipt:
        self._require_open()
        with self._db.write_tx() as con:
            row = con.execute("SELECT state_json FROM registry_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite registry_state is missing")
            work = load_json_row(row["state_json"])

            ts_ms = max(self.now_ms(), int(work.get("last_ts_ms") or 0))
            new_state, entry = _run_apply(work, env, apply_fn, ts_ms, check_invariants=self._check)

            con.execute(
                "UPDATE registry_state SET height=?, state_json=?, updated_ts_ms=? WHERE id=1;",
                (int(new_state["height"]), _canon_json(new_state), _now_ms()),
            )
            con.execute(
                """
                INSERT INTO commit_log(height, ts_ms, tx_type, signer, entry_json)
                VALUES(?, ?, ?, ?, ?);
                """,
                (int(entry["height"]), int(entry["ts_ms"]), env.tx_type, env.signer, _canon_json(entry)),
            )
        return Receipt.from_entry(entry)

    def log(self, limit: int = 100) -> List[Json]:
        self._require_open()
        n = max(0, int(limit))
        if n == 0:
            return []
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT entry_json FROM commit_log ORDER BY height DESC LIMIT ?;",
                (n,),
            ).fetchall()
        out: List[Json] = []
        for r in rows:
            try:
                out.append(load_json_row(r["entry_json"]))
            except (ValueError, json.JSONDecodeError):
                _logger.warning("skipping unreadable commit_log row")
        return out


__all__ = ["Ledger", "MemoryLedger", "SqliteLedger", "InvariantViolation"]
