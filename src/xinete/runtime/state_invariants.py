# src/xinete/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Registry state is a nested JSON-like dict mutated only by
xinete.registry.apply inside a ledger transaction:

  {
    "height": int,
    "last_ts_ms": int,
    "accounts": {owner: {"nonce": int}},
    "registry": {
      "records":  {identifier: record},
      "by_hash":  {integrity_hash: identifier},
      "by_owner": {owner: [identifier, ...]},
    },
  }

ensure_state() creates the core containers. check_registry_invariants()
reports every violation of the index invariants; an empty list means the
three indices agree.
"""

from collections.abc import MutableMapping
from typing import Any, Dict, List

Json = Dict[str, Any]


def initial_state() -> Json:
    return ensure_state({"height": 0, "last_ts_ms": 0})


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains the registry containers.

    Raises:
        TypeError: if st (or one of its containers) has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    acc = st.get("accounts")
    if acc is None:
        st["accounts"] = {}
    elif not isinstance(acc, dict):
        raise TypeError(f"state['accounts'] must be dict, got {type(acc)}")

    reg = st.get("registry")
    if reg is None:
        reg = {}
        st["registry"] = reg
    elif not isinstance(reg, dict):
        raise TypeError(f"state['registry'] must be dict, got {type(reg)}")

    for key in ("records", "by_hash", "by_owner"):
        cur = reg.get(key)
        if cur is None:
            reg[key] = {}
        elif not isinstance(cur, dict):
            raise TypeError(f"state['registry'][{key!r}] must be dict, got {type(cur)}")

    return st  # type: ignore[return-value]


def check_registry_invariants(st: Json) -> List[str]:
    reg = st.get("registry") if isinstance(st.get("registry"), dict) else {}
    records = reg.get("records") if isinstance(reg.get("records"), dict) else {}
    by_hash = reg.get("by_hash") if isinstance(reg.get("by_hash"), dict) else {}
    by_owner = reg.get("by_owner") if isinstance(reg.get("by_owner"), dict) else {}

    problems: List[str] = []

    for ident, rec in records.items():
        if not isinstance(rec, dict):
            problems.append(f"record_not_object:{ident}")
            continue
        owner = str(rec.get("owner") or "")
        h = str(rec.get("integrity_hash") or "")
        if rec.get("identifier") != ident:
            problems.append(f"record_key_mismatch:{ident}")
        if not owner:
            problems.append(f"record_without_owner:{ident}")
        seq = by_owner.get(owner) if isinstance(by_owner.get(owner), list) else []
        n = seq.count(ident)
        if n != 1:
            problems.append(f"owner_index_count:{ident}:{n}")
        if not h or by_hash.get(h) != ident:
            problems.append(f"hash_index_missing:{ident}")

    for h, ident in by_hash.items():
        rec = records.get(ident)
        if not isinstance(rec, dict) or rec.get("integrity_hash") != h:
            problems.append(f"dangling_hash:{h}")

    for owner, seq in by_owner.items():
        if not isinstance(seq, list):
            problems.append(f"owner_index_not_list:{owner}")
            continue
        for ident in seq:
            rec = records.get(ident)
            if not isinstance(rec, dict) or rec.get("owner") != owner:
                problems.append(f"dangling_owner_entry:{owner}:{ident}")

    return problems


__all__ = ["initial_state", "ensure_state", "check_registry_invariants"]
