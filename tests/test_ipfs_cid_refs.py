from __future__ import annotations

from xinete.util.ipfs_cid import extract_cid, unique_cids, validate_ipfs_cid

CID_V1 = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
CID_V0 = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


def test_validate_accepts_common_cids() -> None:
    assert validate_ipfs_cid(CID_V1).ok
    assert validate_ipfs_cid(CID_V0).ok
    assert validate_ipfs_cid("").reason == "missing_cid"
    assert validate_ipfs_cid("not a cid").reason == "invalid_cid_format"
    assert validate_ipfs_cid("b" + "a" * 200).reason == "cid_too_long"


def test_extract_cid_shapes() -> None:
    assert extract_cid(f"ipfs://{CID_V1}") == CID_V1
    assert extract_cid(f"ipfs://ipfs/{CID_V1}") == CID_V1
    assert extract_cid(f"ipfs://{CID_V1}/image.png") == CID_V1
    assert extract_cid(f"https://gw.example/ipfs/{CID_V1}?download=1") == CID_V1
    assert extract_cid(f"/ipfs/{CID_V0}") == CID_V0
    assert extract_cid(CID_V1) == CID_V1


def test_extract_cid_rejects_non_ipfs() -> None:
    assert extract_cid("https://example.com/cat.png") == ""
    assert extract_cid("") == ""
    assert extract_cid(None) == ""
    assert extract_cid({"image": CID_V1}) == ""
    assert extract_cid("ipfs://not-a-cid") == ""


def test_extract_cid_lenient_mode() -> None:
    assert extract_cid("ipfs://bafyIMG", strict=False) == "bafyIMG"
    assert extract_cid("bafyIMG", strict=False) == "bafyIMG"
    assert extract_cid("two words", strict=False) == ""
    assert extract_cid("https://example.com/x.png", strict=False) == ""


def test_unique_cids_keeps_first_occurrence() -> None:
    refs = [f"ipfs://{CID_V1}", CID_V0, CID_V1, "", None]
    assert unique_cids(refs) == [CID_V1, CID_V0]
