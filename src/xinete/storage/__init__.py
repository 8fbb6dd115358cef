# src/xinete/storage/__init__.py
"""
Content storage: the ContentStore interface, its Kubo and in-memory
implementations, the pin coordinator and the pin retry worker.
"""

from xinete.storage.content_store import AddResult, ContentStore
from xinete.storage.kubo import KuboConfig, KuboContentStore
from xinete.storage.memory_store import MemoryContentStore
from xinete.storage.pin_coordinator import PinCoordinator, PinCoordinatorConfig, UploadResult

__all__ = [
    "AddResult",
    "ContentStore",
    "KuboConfig",
    "KuboContentStore",
    "MemoryContentStore",
    "PinCoordinator",
    "PinCoordinatorConfig",
    "UploadResult",
]
