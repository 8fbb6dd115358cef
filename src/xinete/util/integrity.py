# src/xinete/util/integrity.py
from __future__ import annotations

"""Integrity digests for registry records.

The integrity hash stored next to an identifier is SHA-256 (lower-case hex)
over the UTF-8 bytes of the *identifier string itself*, not over the content
bytes the identifier addresses.

NOTE:
  This only proves "this identifier was registered with this hash". It does not
  prove the bytes behind the identifier are untampered; content addressing in
  the store is what gives that guarantee. Registered hashes in the wild depend
  on this exact derivation, so it must not be changed silently.
"""

import hashlib
import hmac
import re

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def digest(identifier: str) -> str:
    """Return sha256(identifier.encode("utf-8")) as lower-case hex."""
    return hashlib.sha256(str(identifier).encode("utf-8")).hexdigest()


def is_digest(value: str) -> bool:
    """Shape check only: 64 lower-case hex characters."""
    if not isinstance(value, str):
        return False
    return bool(_DIGEST_RE.match(value))


def matches(identifier: str, integrity_hash: str) -> bool:
    if not isinstance(integrity_hash, str) or not integrity_hash:
        return False
    return hmac.compare_digest(digest(identifier), integrity_hash.strip().lower())
