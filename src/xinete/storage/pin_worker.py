from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from xinete.runtime.event_log import log_event
from xinete.runtime.metrics import inc_counter, set_gauge
from xinete.runtime.sqlite_db import SqliteDB, _canon_json, _env_int, _now_ms
from xinete.storage.content_store import ContentStore
from xinete.storage.kubo import KuboConfig, KuboContentStore

Json = Dict[str, Any]

log = logging.getLogger("xinete.pin_worker")


def _safe_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _sleep_ms(ms: int) -> None:
    if ms <= 0:
        return
    time.sleep(ms / 1000.0)


@dataclass
class PinRetryConfig:
    db_path: str
    dry_run: bool = False
    max_jobs: int = 200

    # Retry / backoff
    max_attempts: int = _env_int("XINETE_PIN_MAX_ATTEMPTS", 12)
    backoff_base_ms: int = _env_int("XINETE_PIN_BACKOFF_BASE_MS", 750)
    backoff_cap_ms: int = _env_int("XINETE_PIN_BACKOFF_CAP_MS", 60_000)

    # pause between consecutive failures inside one run
    failure_pause_ms: int = 25


class PinRetryWorker:
    """SQLite-backed queue of identifiers whose pin request failed.

    Table: pin_jobs(cid PRIMARY KEY, job_json, updated_ts_ms)

    Enqueueing an identifier that is already queued is a no-op, so a flapping
    store cannot reset a job's retry schedule. run_once() pins every due job
    through the ContentStore; successes are deleted, failures are rescheduled
    with capped exponential backoff.

    Construction does no I/O; initialize() creates the schema.
    """

    def __init__(self, cfg: PinRetryConfig, store: Optional[ContentStore] = None, *, db: Optional[SqliteDB] = None) -> None:
        self.cfg = cfg
        self.store = store
        self.db = db or SqliteDB(path=self.cfg.db_path)
        self._ready = False

    def initialize(self) -> None:
        if not self._ready:
            self.db.init_schema()
            self._ready = True

    def close(self) -> None:
        self._ready = False

    def _require_ready(self) -> None:
        if not self._ready:
            raise RuntimeError("pin_worker_not_initialized")

    def _list_jobs(self) -> List[Json]:
        self._require_ready()
        with self.db.connection() as con:
            rows = con.execute(
                """
                SELECT job_json
                FROM pin_jobs
                ORDER BY updated_ts_ms ASC, cid ASC
                LIMIT ?;
                """,
                (int(self.cfg.max_jobs),),
            ).fetchall()

        out: List[Json] = []
        for r in rows:
            try:
                j = json.loads(str(r["job_json"]))
            except ValueError:
                continue
            if isinstance(j, dict):
                out.append(j)
        return out

    def get_job(self, cid: str) -> Optional[Json]:
        self._require_ready()
        c = str(cid or "").strip()
        with self.db.connection() as con:
            row = con.execute("SELECT job_json FROM pin_jobs WHERE cid=? LIMIT 1;", (c,)).fetchone()
        if row is None:
            return None
        j = json.loads(str(row["job_json"]))
        return j if isinstance(j, dict) else None

    def pending(self) -> int:
        self._require_ready()
        with self.db.connection() as con:
            row = con.execute("SELECT COUNT(*) AS n FROM pin_jobs;").fetchone()
        return int(row["n"]) if row is not None else 0

    def enqueue_job(self, cid: str, *, reason: str = "") -> Json:
        self._require_ready()
        c = str(cid or "").strip()
        if not c:
            return {"ok": False, "error": "missing_cid"}
        now = _now_ms()
        job: Json = {"cid": c, "created_ms": now, "reason": str(reason or ""), "attempts": 0, "status": "queued"}
        with self.db.write_tx() as con:
            cur = con.execute(
                "INSERT OR IGNORE INTO pin_jobs(cid, job_json, updated_ts_ms) VALUES(?, ?, ?);",
                (c, _canon_json(job), now),
            )
            created = int(cur.rowcount or 0) > 0
        if created:
            inc_counter("pin_jobs_enqueued_total")
            log_event(log, "pin_job_enqueued", cid=c, reason=job["reason"])
        return {"ok": True, "cid": c, "created": created}

    def delete_job(self, cid: str) -> Json:
        self._require_ready()
        c = str(cid or "").strip()
        if not c:
            return {"ok": False, "error": "missing_cid"}
        with self.db.write_tx() as con:
            con.execute("DELETE FROM pin_jobs WHERE cid=?;", (c,))
        return {"ok": True, "cid": c}

    def _save_job(self, job: Json) -> None:
        c = str(job.get("cid") or "").strip()
        with self.db.write_tx() as con:
            con.execute(
                "UPDATE pin_jobs SET job_json=?, updated_ts_ms=? WHERE cid=?;",
                (_canon_json(job), _now_ms(), c),
            )

    def _compute_backoff_ms(self, attempts: int) -> int:
        # attempts starts at 1 for the first failure
        a = max(1, int(attempts))
        base = max(50, int(self.cfg.backoff_base_ms))
        cap = max(base, int(self.cfg.backoff_cap_ms))
        delay = base * (2 ** min(a - 1, 30))
        return int(min(delay, cap))

    def run_once(self) -> Json:
        """Retry every due job once.

          - next_attempt_ms in the future: skipped.
          - dry_run: no store I/O, only last_seen_ms/status are stamped.
          - success: the job is deleted.
          - failure: attempts/last_error/next_attempt_ms are updated; after
            max_attempts the job is marked failed and parked at the backoff cap.
        """
        if self.store is None and not self.cfg.dry_run:
            raise RuntimeError("pin_worker_has_no_store")

        jobs = self._list_jobs()
        processed = 0
        skipped = 0
        pinned = 0
        failed = 0
        now = _now_ms()

        for job in jobs:
            cid = str(job.get("cid") or "").strip()
            if not cid:
                skipped += 1
                continue

            next_attempt_ms = _safe_int(job.get("next_attempt_ms"), 0)
            if next_attempt_ms and next_attempt_ms > now:
                skipped += 1
                continue

            if self.cfg.dry_run:
                job["last_seen_ms"] = now
                job["status"] = "dry_run_seen"
                self._save_job(job)
                processed += 1
                continue

            processed += 1
            try:
                self.store.pin(cid)
            except Exception as e:
                failed += 1
                attempts = _safe_int(job.get("attempts"), 0) + 1
                job["attempts"] = attempts
                job["last_seen_ms"] = now
                job["last_error_ms"] = now
                job["last_error"] = str(e)[:2000]
                if attempts >= int(self.cfg.max_attempts):
                    job["status"] = "failed"
                    job["next_attempt_ms"] = now + int(self.cfg.backoff_cap_ms)
                else:
                    job["status"] = "retrying"
                    job["next_attempt_ms"] = now + self._compute_backoff_ms(attempts)
                self._save_job(job)
                inc_counter("pin_retry_failures_total")
                log_event(log, "pin_retry_failed", level=logging.WARNING, cid=cid, attempts=attempts, error=job["last_error"])
                _sleep_ms(int(self.cfg.failure_pause_ms))
                continue

            pinned += 1
            self.delete_job(cid)
            inc_counter("pin_retry_success_total")
            log_event(log, "pin_retry_pinned", cid=cid, attempts=_safe_int(job.get("attempts"), 0))

        set_gauge("pin_jobs_pending", self.pending())
        return {
            "ok": True,
            "processed": processed,
            "skipped": skipped,
            "pinned": pinned,
            "failed": failed,
        }


class PinRetryLoop:
    """Drains a PinRetryWorker on a timer inside the serving process.

    initialize() starts the thread, close() stops and joins it. A failing
    run_once() is logged and counted; the loop keeps going.
    """

    def __init__(self, worker: PinRetryWorker, *, interval_s: float = 30.0) -> None:
        self._worker = worker
        self._interval_s = max(0.05, float(interval_s))
        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def started(self) -> bool:
        return self._t is not None and self._t.is_alive()

    def tick(self) -> Json:
        try:
            return self._worker.run_once()
        except Exception as e:
            inc_counter("pin_retry_loop_errors_total")
            log.exception("pin retry loop error: %s", e)
            return {"ok": False, "error": str(e)}

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            self.tick()

    def initialize(self) -> None:
        if self._t is not None:
            return
        self._stop.clear()
        self._t = threading.Thread(target=self._run, name="xinete-pin-retry", daemon=True)
        self._t.start()

    def close(self) -> None:
        self._stop.set()
        t = self._t
        self._t = None
        if t is not None:
            t.join(timeout=5.0)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Xinete pin retry worker (SQLite-backed)")
    ap.add_argument("--db", dest="db_path", default=os.environ.get("XINETE_DB_PATH", "./data/xinete.db"))
    ap.add_argument("--dry-run", dest="dry_run", action="store_true")
    ap.add_argument("--max-jobs", dest="max_jobs", type=int, default=200)
    ap.add_argument("--ipfs-api", dest="ipfs_api_url", default=os.environ.get("XINETE_IPFS_API_URL", "http://127.0.0.1:5001"))
    ap.add_argument("--ipfs-timeout", dest="ipfs_timeout_s", type=float, default=float(os.environ.get("XINETE_IPFS_TIMEOUT_S", "10") or "10"))
    ap.add_argument("--max-attempts", dest="max_attempts", type=int, default=_env_int("XINETE_PIN_MAX_ATTEMPTS", 12))
    ap.add_argument("--backoff-base-ms", dest="backoff_base_ms", type=int, default=_env_int("XINETE_PIN_BACKOFF_BASE_MS", 750))
    ap.add_argument("--backoff-cap-ms", dest="backoff_cap_ms", type=int, default=_env_int("XINETE_PIN_BACKOFF_CAP_MS", 60_000))
    ap.add_argument("--enqueue", dest="enqueue", default="")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    cfg = PinRetryConfig(
        db_path=str(args.db_path),
        dry_run=bool(args.dry_run),
        max_jobs=int(args.max_jobs),
        max_attempts=int(args.max_attempts),
        backoff_base_ms=int(args.backoff_base_ms),
        backoff_cap_ms=int(args.backoff_cap_ms),
    )

    if args.enqueue:
        w = PinRetryWorker(cfg)
        w.initialize()
        res = w.enqueue_job(str(args.enqueue), reason="manual")
        print(json.dumps(res, indent=2))
        return 0 if res.get("ok") else 1

    store = KuboContentStore(KuboConfig(api_base=str(args.ipfs_api_url or "").strip(), timeout_s=float(args.ipfs_timeout_s)))
    if not cfg.dry_run:
        store.initialize()
    try:
        w = PinRetryWorker(cfg, store)
        w.initialize()
        res = w.run_once()
    finally:
        store.close()
    print(json.dumps(res, indent=2))
    return 0 if res.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
