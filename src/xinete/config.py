# src/xinete/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple


def _is_truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return _is_truthy(v)


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _parse_cors_origins(raw: str) -> Tuple[str, ...]:
    # "*" or comma-separated list
    s = (raw or "").strip()
    if not s:
        return ()
    if s == "*":
        return ("*",)
    return tuple(p.strip() for p in s.split(",") if p.strip())


@dataclass(frozen=True)
class XineteConfig:
    mode: str  # "dev" | "prod"
    ledger_backend: str  # "memory" | "sqlite"
    db_path: str
    store_backend: str  # "kubo" | "memory"
    ipfs_api_url: str
    ipfs_gateway_url: str
    ipfs_timeout_s: float
    pin_call_timeout_s: float
    pin_on_read_background: bool
    pin_retry_enabled: bool
    pin_retry_interval_s: float  # 0 disables the in-process drain loop
    check_invariants: bool
    cors_origins: Tuple[str, ...]
    max_upload_bytes: int

    @property
    def is_prod(self) -> bool:
        return self.mode == "prod"


def load_config() -> XineteConfig:
    """Read XINETE_* environment variables. Invalid values raise ValueError."""
    mode = os.getenv("XINETE_MODE", "dev").strip().lower() or "dev"
    if mode not in {"dev", "prod"}:
        raise ValueError(f"XINETE_MODE must be dev or prod, got {mode!r}")

    ledger_backend = os.getenv("XINETE_LEDGER_BACKEND", "sqlite").strip().lower() or "sqlite"
    if ledger_backend not in {"memory", "sqlite"}:
        raise ValueError(f"XINETE_LEDGER_BACKEND must be memory or sqlite, got {ledger_backend!r}")

    store_backend = os.getenv("XINETE_STORE_BACKEND", "kubo").strip().lower() or "kubo"
    if store_backend not in {"kubo", "memory"}:
        raise ValueError(f"XINETE_STORE_BACKEND must be kubo or memory, got {store_backend!r}")

    try:
        max_upload = int((os.getenv("XINETE_MAX_UPLOAD_BYTES") or "").strip() or 25 * 1024 * 1024)
    except ValueError:
        raise ValueError("XINETE_MAX_UPLOAD_BYTES must be an integer")

    return XineteConfig(
        mode=mode,
        ledger_backend=ledger_backend,
        db_path=os.getenv("XINETE_DB_PATH", "./data/xinete.db").strip() or "./data/xinete.db",
        store_backend=store_backend,
        ipfs_api_url=os.getenv("XINETE_IPFS_API_URL", "http://127.0.0.1:5001").strip(),
        ipfs_gateway_url=os.getenv("XINETE_IPFS_GATEWAY_URL", "http://127.0.0.1:8080").strip(),
        ipfs_timeout_s=_env_float("XINETE_IPFS_TIMEOUT_S", 30.0),
        pin_call_timeout_s=_env_float("XINETE_PIN_TIMEOUT_S", 10.0),
        pin_on_read_background=_env_bool("XINETE_PIN_ON_READ_BACKGROUND", False),
        pin_retry_enabled=_env_bool("XINETE_PIN_RETRY_ENABLED", ledger_backend == "sqlite"),
        pin_retry_interval_s=max(0.0, _env_float("XINETE_PIN_RETRY_INTERVAL_S", 30.0)),
        check_invariants=_env_bool("XINETE_CHECK_INVARIANTS", mode != "prod"),
        cors_origins=_parse_cors_origins(os.getenv("XINETE_CORS_ORIGINS", "")),
        max_upload_bytes=max(1, max_upload),
    )
