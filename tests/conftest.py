from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

# Ensure local "src/" takes precedence over any globally-installed "xinete" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from xinete.registry.ledger import MemoryLedger  # noqa: E402
from xinete.registry.registry import MetadataRegistry  # noqa: E402
from xinete.runtime import metrics  # noqa: E402
from xinete.storage.memory_store import MemoryContentStore  # noqa: E402
from xinete.storage.pin_coordinator import PinCoordinator, PinCoordinatorConfig  # noqa: E402


class StepClock:
    """Deterministic ledger clock: 1000, 1001, 1002, ..."""

    def __init__(self, start: int = 1000) -> None:
        self.t = start

    def __call__(self) -> int:
        self.t += 1
        return self.t


@pytest.fixture(autouse=True)
def _reset_metrics() -> Iterator[None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def ledger() -> Iterator[MemoryLedger]:
    led = MemoryLedger(clock=StepClock())
    led.initialize()
    yield led
    led.close()


@pytest.fixture
def registry(ledger: MemoryLedger) -> MetadataRegistry:
    return MetadataRegistry(ledger)


@pytest.fixture
def mem_store() -> Iterator[MemoryContentStore]:
    st = MemoryContentStore(gateway_base="http://gw.test")
    st.initialize()
    yield st
    st.close()


@pytest.fixture
def pins(mem_store: MemoryContentStore) -> Iterator[PinCoordinator]:
    pc = PinCoordinator(mem_store, PinCoordinatorConfig(call_timeout_s=2.0))
    pc.initialize()
    yield pc
    pc.close()
