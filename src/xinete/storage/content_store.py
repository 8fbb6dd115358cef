# src/xinete/storage/content_store.py
from __future__ import annotations

"""Content store capability interface.

Anything content-addressed that can add bytes, pin, report pin status and
stream bytes back is substitutable here (Kubo HTTP API in production, the
in-memory store in tests).

Error contract for implementations:
  - add()/get() raise StoreUnavailable when the store cannot serve the call
  - pin() raises PinFailure when the pin request is not acknowledged
  - is_pinned() raises PinFailure when pin status cannot be determined
"""

from dataclasses import dataclass
from typing import Iterator, Protocol


@dataclass(frozen=True)
class AddResult:
    identifier: str
    size: int


class ContentStore(Protocol):
    def initialize(self) -> None: ...

    def close(self) -> None: ...

    def add(self, data: bytes, *, name: str, pin: bool) -> AddResult: ...

    def pin(self, identifier: str) -> None: ...

    def is_pinned(self, identifier: str) -> bool: ...

    def get(self, identifier: str) -> Iterator[bytes]: ...

    def gateway_url(self, identifier: str) -> str: ...
