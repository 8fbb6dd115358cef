from __future__ import annotations

import hashlib
import json
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterator, Set

import pytest

from xinete.errors import PinFailure, StoreUnavailable
from xinete.storage.kubo import KuboConfig, KuboContentStore, _parse_ipfs_add_response


class _FakeKubo:
    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}
        self.pinned: Set[str] = set()
        self.reject_pins = False


def _read_chunked(rfile) -> bytes:
    out = b""
    while True:
        size = int(rfile.readline().strip(), 16)
        if size == 0:
            rfile.readline()
            return out
        out += rfile.read(size)
        rfile.readline()


def _multipart_file(body: bytes) -> bytes:
    head, _, rest = body.partition(b"\r\n\r\n")
    boundary = head.split(b"\r\n", 1)[0]
    return rest.rsplit(b"\r\n" + boundary + b"--", 1)[0]


def _handler(kubo: _FakeKubo):
    class H(BaseHTTPRequestHandler):
        def log_message(self, *args) -> None:
            pass

        def _json(self, status: int, obj) -> None:
            raw = json.dumps(obj).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

        def do_POST(self) -> None:
            u = urllib.parse.urlparse(self.path)
            q = urllib.parse.parse_qs(u.query)
            arg = (q.get("arg") or [""])[0]

            if u.path == "/api/v0/add":
                data = _multipart_file(_read_chunked(self.rfile))
                cid = "bafk" + hashlib.sha256(data).hexdigest()[:40]
                kubo.blobs[cid] = data
                if q.get("pin") == ["true"]:
                    kubo.pinned.add(cid)
                # progress-style NDJSON: last object wins
                lines = json.dumps({"Name": "upload"}) + "\n" + json.dumps({"Name": "upload", "Hash": cid, "Size": str(len(data))}) + "\n"
                raw = lines.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Length", str(len(raw)))
                self.end_headers()
                self.wfile.write(raw)
                return

            if u.path == "/api/v0/pin/add":
                if kubo.reject_pins or arg not in kubo.blobs:
                    self._json(500, {"Message": "pin: context deadline exceeded", "Code": 0})
                    return
                kubo.pinned.add(arg)
                self._json(200, {"Pins": [arg]})
                return

            if u.path == "/api/v0/pin/ls":
                if arg in kubo.pinned:
                    self._json(200, {"Keys": {arg: {"Type": "recursive"}}})
                else:
                    self._json(500, {"Message": f"path '{arg}' is not pinned", "Code": 0})
                return

            if u.path == "/api/v0/cat":
                data = kubo.blobs.get(arg)
                if data is None:
                    self._json(500, {"Message": "block was not found locally (offline)", "Code": 0})
                    return
                self.send_response(200)
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)
                return

            self._json(404, {"Message": "unknown path"})

    return H


@pytest.fixture
def kubo() -> Iterator[tuple]:
    fake = _FakeKubo()
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _handler(fake))
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    host, port = srv.server_address[0], srv.server_address[1]
    store = KuboContentStore(KuboConfig(api_base=f"http://{host}:{port}", gateway_base="https://gw.example/", timeout_s=5.0))
    store.initialize()
    try:
        yield store, fake
    finally:
        store.close()
        srv.shutdown()
        srv.server_close()


def test_add_pin_status_and_cat(kubo) -> None:
    store, fake = kubo
    payload = b"hello kubo" * 1000

    res = store.add(payload, name="hello.txt", pin=False)
    assert res.size == len(payload)
    assert fake.blobs[res.identifier] == payload
    assert store.is_pinned(res.identifier) is False

    store.pin(res.identifier)
    assert store.is_pinned(res.identifier) is True
    assert b"".join(store.get(res.identifier)) == payload
    assert store.gateway_url(res.identifier) == f"https://gw.example/ipfs/{res.identifier}"


def test_add_with_pin_at_upload(kubo) -> None:
    store, fake = kubo
    res = store.add(b"x", name="x", pin=True)
    assert res.identifier in fake.pinned


def test_pin_rejection_raises_pin_failure(kubo) -> None:
    store, fake = kubo
    res = store.add(b"x", name="x", pin=False)
    fake.reject_pins = True
    with pytest.raises(PinFailure) as ei:
        store.pin(res.identifier)
    assert ei.value.reason == "pin_rejected"


def test_cat_of_missing_content_raises_store_unavailable(kubo) -> None:
    store, _ = kubo
    with pytest.raises(StoreUnavailable):
        store.get("bafkMissing")


def test_unreachable_node() -> None:
    store = KuboContentStore(KuboConfig(api_base="http://127.0.0.1:9", timeout_s=0.5))
    store.initialize()
    with pytest.raises(StoreUnavailable):
        store.add(b"x", name="x", pin=True)
    with pytest.raises(PinFailure):
        store.pin("bafyA")
    with pytest.raises(PinFailure):
        store.is_pinned("bafyA")


def test_lifecycle_and_config_checks() -> None:
    store = KuboContentStore(KuboConfig(api_base="http://127.0.0.1:5001"))
    with pytest.raises(RuntimeError):
        store.pin("bafyA")
    with pytest.raises(RuntimeError):
        KuboContentStore(KuboConfig(api_base="ftp://node")).initialize()


def test_parse_add_response() -> None:
    raw = b'{"Name":"a","Bytes":10}\n{"Name":"a","Hash":"bafyX","Size":"12"}\n'
    assert _parse_ipfs_add_response(raw) == ("bafyX", 12)
    with pytest.raises(StoreUnavailable):
        _parse_ipfs_add_response(b"")
    with pytest.raises(StoreUnavailable):
        _parse_ipfs_add_response(b'{"Name":"a"}')
