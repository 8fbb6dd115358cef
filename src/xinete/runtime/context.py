# src/xinete/runtime/context.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from xinete.config import XineteConfig, load_config
from xinete.registry.ledger import Ledger, MemoryLedger, SqliteLedger
from xinete.registry.registry import MetadataRegistry
from xinete.runtime.event_log import log_event
from xinete.services.catalog import CatalogService
from xinete.storage.content_store import ContentStore
from xinete.storage.kubo import KuboConfig, KuboContentStore
from xinete.storage.memory_store import MemoryContentStore
from xinete.storage.pin_coordinator import PinCoordinator, PinCoordinatorConfig
from xinete.storage.pin_worker import PinRetryConfig, PinRetryLoop, PinRetryWorker

log = logging.getLogger("xinete.runtime")


@dataclass
class AppContext:
    """Everything one process needs, built from one config.

    Components are constructed eagerly but do no I/O until initialize().
    initialize() opens ledger, retry queue, store and coordinator, then starts
    the retry drain loop; close() releases them in reverse order and is safe
    to call twice.
    """

    cfg: XineteConfig
    ledger: Ledger
    registry: MetadataRegistry
    store: ContentStore
    pins: PinCoordinator
    catalog: CatalogService
    retry_worker: Optional[PinRetryWorker] = None
    retry_loop: Optional[PinRetryLoop] = None
    _opened: List[Any] = field(default_factory=list, repr=False)

    def initialize(self) -> None:
        if self._opened:
            return
        for comp in self._components():
            comp.initialize()
            self._opened.append(comp)
        log_event(
            log,
            "context_initialized",
            mode=self.cfg.mode,
            ledger=self.cfg.ledger_backend,
            store=self.cfg.store_backend,
            height=self.registry.height(),
        )

    def _components(self) -> List[Any]:
        comps: List[Any] = [self.ledger]
        if self.retry_worker is not None:
            comps.append(self.retry_worker)
        comps.extend([self.store, self.pins])
        if self.retry_loop is not None:
            comps.append(self.retry_loop)
        return comps

    def close(self) -> None:
        while self._opened:
            comp = self._opened.pop()
            try:
                comp.close()
            except Exception as e:
                log.warning("close failed for %s: %s", type(comp).__name__, e)

    def status(self) -> Dict[str, Any]:
        return {
            "mode": self.cfg.mode,
            "ledger": self.cfg.ledger_backend,
            "store": self.cfg.store_backend,
            "height": self.registry.height(),
            "pin_retry": self.retry_worker is not None,
            "pin_retry_loop": self.retry_loop is not None and self.retry_loop.started,
        }


def _build_ledger(cfg: XineteConfig) -> Ledger:
    if cfg.ledger_backend == "memory":
        return MemoryLedger(check_invariants=cfg.check_invariants)
    return SqliteLedger(db_path=cfg.db_path, check_invariants=cfg.check_invariants)


def _build_store(cfg: XineteConfig) -> ContentStore:
    if cfg.store_backend == "memory":
        return MemoryContentStore(gateway_base=cfg.ipfs_gateway_url)
    return KuboContentStore(
        KuboConfig(api_base=cfg.ipfs_api_url, gateway_base=cfg.ipfs_gateway_url, timeout_s=cfg.ipfs_timeout_s)
    )


def build_context(
    cfg: Optional[XineteConfig] = None,
    *,
    ledger: Optional[Ledger] = None,
    store: Optional[ContentStore] = None,
) -> AppContext:
    """Build an AppContext from cfg (or the environment).

    ledger/store overrides let tests plug in doubles without touching env.
    """
    c = cfg or load_config()
    led = ledger if ledger is not None else _build_ledger(c)
    st = store if store is not None else _build_store(c)

    retry: Optional[PinRetryWorker] = None
    if c.pin_retry_enabled:
        retry = PinRetryWorker(PinRetryConfig(db_path=c.db_path), st)
    loop: Optional[PinRetryLoop] = None
    if retry is not None and c.pin_retry_interval_s > 0:
        loop = PinRetryLoop(retry, interval_s=c.pin_retry_interval_s)

    pins = PinCoordinator(
        st,
        PinCoordinatorConfig(
            call_timeout_s=c.pin_call_timeout_s,
            pin_on_read_background=c.pin_on_read_background,
        ),
        retry_queue=retry,
    )
    registry = MetadataRegistry(led)
    return AppContext(
        cfg=c,
        ledger=led,
        registry=registry,
        store=st,
        pins=pins,
        catalog=CatalogService(registry, pins),
        retry_worker=retry,
        retry_loop=loop,
    )
