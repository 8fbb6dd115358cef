from __future__ import annotations

import pytest

from xinete.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from xinete.registry.registry import MetadataRegistry
from xinete.registry.types import Updated
from xinete.runtime.state_invariants import check_registry_invariants


def _indices(registry: MetadataRegistry) -> dict:
    return registry.ledger.read()["registry"]


def test_update_moves_every_index(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyOld", "hOld", "v1")
    registry.store("alice", "bafyOther", "hOther")

    receipt = registry.update("alice", "bafyOld", "bafyNew", "hNew", "v2", "ipfs://bafyIMG")

    assert registry.lookup_by_hash("hOld") == ""
    assert registry.lookup_by_hash("hNew") == "bafyNew"
    owned = registry.list_owned("alice")
    assert "bafyNew" in owned
    assert "bafyOld" not in owned
    assert registry.owner_of("bafyOld") == ""
    assert registry.owner_of("bafyNew") == "alice"

    rec = registry.get_record("bafyNew")
    assert rec.display_name == "v2"
    assert rec.media_ref == "ipfs://bafyIMG"
    with pytest.raises(NotFoundError):
        registry.get_record("bafyOld")

    assert isinstance(receipt.events[0], Updated)
    assert receipt.result["old_identifier"] == "bafyOld"
    assert check_registry_invariants(registry.ledger.read()) == []


def test_update_keeps_owner_list_position(registry: MetadataRegistry) -> None:
    for i in range(3):
        registry.store("alice", f"bafy{i}", f"h{i}")
    registry.update("alice", "bafy1", "bafyX", "hX")
    assert registry.list_owned("alice") == ["bafy0", "bafyX", "bafy2"]


def test_update_same_identifier_new_hash(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.update("alice", "bafyA", "bafyA", "h2")
    assert registry.lookup_by_hash("h1") == ""
    assert registry.lookup_by_hash("h2") == "bafyA"
    assert registry.list_owned("alice") == ["bafyA"]


def test_update_may_reuse_own_hash(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.update("alice", "bafyA", "bafyB", "h1")
    assert registry.lookup_by_hash("h1") == "bafyB"
    assert registry.owner_of("bafyA") == ""


def test_update_by_non_owner_is_rejected(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    before = _indices(registry)
    with pytest.raises(AuthorizationError):
        registry.update("bob", "bafyA", "bafyB", "h2")
    assert _indices(registry) == before


def test_update_of_missing_record_is_unauthorized(registry: MetadataRegistry) -> None:
    with pytest.raises(AuthorizationError):
        registry.update("alice", "bafyGhost", "bafyB", "h2")


def test_update_conflicts(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.store("bob", "bafyB", "h2")

    with pytest.raises(ConflictError) as ei:
        registry.update("alice", "bafyA", "bafyB", "h3")
    assert ei.value.reason == "identifier_exists"

    with pytest.raises(ConflictError) as ei:
        registry.update("alice", "bafyA", "bafyC", "h2")
    assert ei.value.reason == "hash_exists"

    assert registry.owner_of("bafyA") == "alice"
    assert registry.lookup_by_hash("h1") == "bafyA"


def test_update_validation(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    with pytest.raises(ValidationError):
        registry.update("alice", "bafyA", "", "h2")
    with pytest.raises(ValidationError):
        registry.update("alice", "bafyA", "bafyB", "")


def test_remove_by_non_owner_leaves_indices_unchanged(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    before = _indices(registry)
    height = registry.height()

    with pytest.raises(AuthorizationError):
        registry.remove("bob", "bafyA")

    assert _indices(registry) == before
    assert registry.height() == height


def test_remove_by_owner(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.remove("alice", "bafyA")
    with pytest.raises(NotFoundError):
        registry.get_record("bafyA")
    assert registry.owner_of("bafyA") == ""
    assert "alice" not in _indices(registry)["by_owner"]


def test_remove_twice_is_unauthorized(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.remove("alice", "bafyA")
    with pytest.raises(AuthorizationError):
        registry.remove("alice", "bafyA")


def test_remove_swaps_last_into_slot(registry: MetadataRegistry) -> None:
    for i in range(4):
        registry.store("alice", f"bafy{i}", f"h{i}")
    registry.remove("alice", "bafy1")
    owned = registry.list_owned("alice")
    assert owned == ["bafy0", "bafy3", "bafy2"]
    assert sorted(owned) == ["bafy0", "bafy2", "bafy3"]


def test_verify_tracks_active_records(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    assert registry.verify("bafyA", "h1") is True
    assert registry.verify("bafyA", "h2") is False
    assert registry.verify("bafyB", "h1") is False
    assert registry.verify("", "") is False

    registry.remove("alice", "bafyA")
    assert registry.verify("bafyA", "h1") is False


def test_verify_after_update(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.update("alice", "bafyA", "bafyB", "h2")
    assert registry.verify("bafyA", "h1") is False
    assert registry.verify("bafyB", "h2") is True


def test_history_newest_first(registry: MetadataRegistry) -> None:
    registry.store("alice", "bafyA", "h1")
    registry.update("alice", "bafyA", "bafyB", "h2")
    registry.remove("alice", "bafyB")

    log = registry.history(10)
    assert [e["height"] for e in log] == [3, 2, 1]
    assert log[0]["tx"]["tx_type"] == "CONTENT_REMOVE"
    assert log[2]["events"][0]["event"] == "Stored"
    assert len(registry.history(1)) == 1
