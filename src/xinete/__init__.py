# src/xinete/__init__.py
"""
xinete: content metadata registry + IPFS pin coordination.

Packages:
  - registry: ledger-backed identifier/hash/owner state machine
  - storage: content store clients + pin coordinator + pin retry worker
  - services: producer/consumer flows composed from the two
  - api: FastAPI surface
"""

__version__ = "0.3.0"
