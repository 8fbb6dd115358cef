# src/xinete/util/ipfs_cid.py
from __future__ import annotations

"""IPFS CID validation + reference extraction helpers.

We keep validation lightweight and dependency-free:
  - CIDv0 (base58btc) commonly starts with "Qm" and is length 46.
  - CIDv1 (base32 lowercase) commonly starts with "b" and uses the RFC4648
    base32 alphabet in lowercase: a-z2-7.

This is NOT a full multiformats parser. The goal is to fail-closed on obviously
bad inputs, while accepting the vast majority of real-world CIDs.

Records and metadata documents point at other content in several shapes:
  - ipfs://<cid>[/path]
  - https://gateway.example/ipfs/<cid>[/path]
  - /ipfs/<cid>
  - <cid>
extract_cid() normalizes all of them to the bare CID (or "" if none).
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, List


_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # base32 lowercase (bafy..., bagy...)

_IPFS_SCHEME = "ipfs://"
_IPFS_PATH_RE = re.compile(r"/ipfs/([^/?#]+)")


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c)
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def extract_cid(ref: Any, *, strict: bool = True) -> str:
    """Return the CID a reference points at, or "" if it does not look like one.

    strict=False accepts any whitespace-free token in CID position, for
    content stores whose identifiers are not multiformats CIDs. Non-IPFS URLs
    (https://host/file.png) never yield an identifier.
    """
    if not isinstance(ref, str):
        return ""
    s = ref.strip()
    if not s:
        return ""

    if s.lower().startswith(_IPFS_SCHEME):
        s = s[len(_IPFS_SCHEME):]
        # ipfs://ipfs/<cid> is a common malformed variant
        if s.startswith("ipfs/"):
            s = s[len("ipfs/"):]
    else:
        m = _IPFS_PATH_RE.search(s)
        if m:
            s = m.group(1)
        elif "://" in s:
            return ""

    s = s.split("/", 1)[0].split("?", 1)[0].split("#", 1)[0].strip()
    if not strict:
        if not s or any(ch.isspace() for ch in s) or len(s) > 128:
            return ""
        return s
    v = validate_ipfs_cid(s)
    return v.cid if v.ok else ""


def unique_cids(refs: Iterable[Any], *, strict: bool = True) -> List[str]:
    """Extract CIDs from refs, dropping blanks and duplicates (first occurrence wins)."""
    out: List[str] = []
    seen = set()
    for r in refs:
        c = extract_cid(r, strict=strict)
        if c and c not in seen:
            seen.add(c)
            out.append(c)
    return out
