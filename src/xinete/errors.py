# src/xinete/errors.py
from __future__ import annotations

"""Canonical domain error taxonomy.

Registry errors abort the triggering transaction and surface to the caller
verbatim. Store/pin errors are raised by content-store clients; the pin
coordinator absorbs PinFailure at its boundary.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict

Json = Dict[str, Any]


@dataclass
class XineteError(RuntimeError):
    reason: str
    details: Json = field(default_factory=dict)

    code: ClassVar[str] = "error"

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> Json:
        return {"code": self.code, "reason": self.reason, "details": dict(self.details)}


class ValidationError(XineteError):
    """Empty/malformed identifier, hash or envelope on a mutating call."""

    code: ClassVar[str] = "validation_error"


class ConflictError(XineteError):
    """Identifier or integrity hash already bound to an active record."""

    code: ClassVar[str] = "conflict"


class AuthorizationError(XineteError):
    """Caller is not the current owner (or could not be authenticated)."""

    code: ClassVar[str] = "forbidden"


class NotFoundError(XineteError):
    code: ClassVar[str] = "not_found"


class StoreUnavailable(XineteError):
    """Content store unreachable (or too slow) for an upload or read."""

    code: ClassVar[str] = "store_unavailable"


class PinFailure(XineteError):
    """A pin request failed. Never fatal to the primary workflow."""

    code: ClassVar[str] = "pin_failure"


__all__ = [
    "XineteError",
    "ValidationError",
    "ConflictError",
    "AuthorizationError",
    "NotFoundError",
    "StoreUnavailable",
    "PinFailure",
]
