# src/xinete/registry/__init__.py
"""
Metadata registry.

  - types:  ContentRecord, events, TxEnvelope, Receipt
  - apply:  deterministic store/update/remove transitions
  - ledger: MemoryLedger / SqliteLedger (linearize + commit log)
  - registry: MetadataRegistry facade (mutations, queries, subscribers)
"""

from xinete.registry.ledger import MemoryLedger, SqliteLedger
from xinete.registry.registry import MetadataRegistry
from xinete.registry.types import ContentRecord, Receipt, Removed, Stored, TxEnvelope, Updated

__all__ = [
    "ContentRecord",
    "MemoryLedger",
    "MetadataRegistry",
    "Receipt",
    "Removed",
    "SqliteLedger",
    "Stored",
    "TxEnvelope",
    "Updated",
]
