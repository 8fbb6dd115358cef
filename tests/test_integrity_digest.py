from __future__ import annotations

import hashlib

from xinete.util.integrity import digest, is_digest, matches


def test_digest_is_sha256_of_identifier_string() -> None:
    assert digest("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert digest("bafyAAA") == hashlib.sha256(b"bafyAAA").hexdigest()


def test_digest_depends_on_identifier_not_content() -> None:
    # same identifier, whatever bytes it addresses, same digest
    assert digest("bafyAAA") == digest("bafyAAA")
    assert digest("bafyAAA") != digest("bafyAAB")


def test_digest_utf8() -> None:
    assert digest("été") == hashlib.sha256("été".encode("utf-8")).hexdigest()


def test_is_digest_shape() -> None:
    assert is_digest(digest("x"))
    assert not is_digest(digest("x").upper())
    assert not is_digest("abc")
    assert not is_digest(None)  # type: ignore[arg-type]


def test_matches() -> None:
    h = digest("bafyAAA")
    assert matches("bafyAAA", h)
    assert matches("bafyAAA", h.upper())
    assert not matches("bafyAAB", h)
    assert not matches("bafyAAA", "")
