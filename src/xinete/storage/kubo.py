# src/xinete/storage/kubo.py
from __future__ import annotations

"""IPFS (Kubo) HTTP API content store.

Endpoints used (all POST, per the Kubo RPC convention):
  /api/v0/add      streamed multipart upload, NDJSON response
  /api/v0/pin/add  recursive pin
  /api/v0/pin/ls   pin status (HTTP 500 + "is not pinned" when unpinned)
  /api/v0/cat      streamed read
"""

import http.client
import json
import logging
import urllib.parse
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Dict, Iterator, Optional, Tuple

from xinete.errors import PinFailure, StoreUnavailable
from xinete.storage.content_store import AddResult

log = logging.getLogger("xinete.storage.kubo")

_BOUNDARY = "----xinete-ipfs-boundary-3c1e9a07d54b4f21"
_CHUNK = 1024 * 256


@dataclass(frozen=True)
class KuboConfig:
    api_base: str = "http://127.0.0.1:5001"
    gateway_base: str = "http://127.0.0.1:8080"
    timeout_s: float = 30.0


def _send_chunk(conn: http.client.HTTPConnection, data: bytes) -> None:
    if not data:
        return
    conn.send(f"{len(data):X}\r\n".encode("ascii"))
    conn.send(data)
    conn.send(b"\r\n")


def _finish_chunks(conn: http.client.HTTPConnection) -> None:
    conn.send(b"0\r\n\r\n")


def _parse_ipfs_add_response(raw: bytes) -> Tuple[str, int]:
    """
    /api/v0/add returns NDJSON (one JSON per line).
    We take the last valid JSON object and extract Hash + Size.
    """
    txt = raw.decode("utf-8", errors="replace").strip()
    if not txt:
        raise StoreUnavailable("ipfs_add_failed", {"error": "empty_response"})

    last_obj: Optional[dict] = None
    for line in txt.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if isinstance(obj, dict):
            last_obj = obj

    if not isinstance(last_obj, dict):
        raise StoreUnavailable("ipfs_add_failed", {"error": "bad_response", "body": txt[:200]})

    cid = str(last_obj.get("Hash") or "").strip()
    size_s = str(last_obj.get("Size") or "0").strip()
    try:
        size = int(size_s)
    except ValueError:
        size = 0

    if not cid:
        raise StoreUnavailable("ipfs_add_failed", {"error": "missing_hash"})

    return cid, size


class KuboContentStore:
    """Kubo RPC client with an explicit lifecycle.

    Connections are opened per call; initialize() only validates config so
    that a misconfigured deployment fails at startup rather than on first use.
    """

    def __init__(self, cfg: KuboConfig) -> None:
        self.cfg = cfg
        self._host = ""
        self._port = 0
        self._https = False
        self._open = False

    def initialize(self) -> None:
        base = str(self.cfg.api_base or "").strip()
        if not base:
            raise RuntimeError("ipfs_disabled: api_base is empty")
        u = urllib.parse.urlparse(base)
        scheme = (u.scheme or "http").lower()
        if scheme not in {"http", "https"}:
            raise RuntimeError(f"ipfs api_base must be http(s), got {scheme!r}")
        self._https = scheme == "https"
        self._host = u.hostname or "127.0.0.1"
        self._port = int(u.port or (443 if self._https else 80))
        self._open = True

    def close(self) -> None:
        self._open = False

    def _conn(self) -> http.client.HTTPConnection:
        if not self._open:
            raise RuntimeError("content_store_not_initialized")
        timeout = float(self.cfg.timeout_s)
        if self._https:
            return http.client.HTTPSConnection(self._host, self._port, timeout=timeout)
        return http.client.HTTPConnection(self._host, self._port, timeout=timeout)

    def gateway_url(self, identifier: str) -> str:
        cid = (identifier or "").strip()
        base = str(self.cfg.gateway_base or "").strip().rstrip("/")
        if not cid or not base:
            return ""
        return f"{base}/ipfs/{cid}"

    def _rpc(self, path: str, query: Dict[str, str]) -> Tuple[int, bytes]:
        """POST an RPC call with no body. Raises OSError/HTTPException on transport failure."""
        qs = urllib.parse.urlencode(query)
        conn = self._conn()
        try:
            conn.request("POST", f"{path}?{qs}" if qs else path, body=b"", headers={"Accept": "application/json"})
            resp = conn.getresponse()
            return int(resp.status), resp.read()
        finally:
            conn.close()

    # ----------------------------
    # add
    # ----------------------------

    def add_fileobj(self, *, name: str, fileobj: BinaryIO, pin: bool) -> AddResult:
        """Stream a file-like object to IPFS without loading it into memory.

        Uses chunked transfer encoding to avoid buffering the multipart body.
        """
        qs = urllib.parse.urlencode(
            {
                "pin": "true" if pin else "false",
                "wrap-with-directory": "false",
                "progress": "false",
            }
        )
        filename = (name or "upload").strip() or "upload"
        preamble = (
            f"--{_BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'
            f"Content-Type: application/octet-stream\r\n"
            f"\r\n"
        ).encode("utf-8")
        epilogue = f"\r\n--{_BOUNDARY}--\r\n".encode("utf-8")

        conn = self._conn()
        try:
            conn.putrequest("POST", f"/api/v0/add?{qs}")
            conn.putheader("Content-Type", f"multipart/form-data; boundary={_BOUNDARY}")
            conn.putheader("Transfer-Encoding", "chunked")
            conn.endheaders()

            _send_chunk(conn, preamble)
            while True:
                chunk = fileobj.read(_CHUNK)
                if not chunk:
                    break
                if isinstance(chunk, str):
                    chunk = chunk.encode("utf-8")
                _send_chunk(conn, chunk)
            _send_chunk(conn, epilogue)
            _finish_chunks(conn)

            resp = conn.getresponse()
            body = resp.read()
        except (OSError, http.client.HTTPException) as e:
            raise StoreUnavailable("ipfs_add_failed", {"error": str(e)}) from e
        finally:
            conn.close()

        if resp.status < 200 or resp.status >= 300:
            msg = body.decode("utf-8", errors="replace").strip()
            raise StoreUnavailable("ipfs_add_failed", {"http_status": resp.status, "body": msg[:300]})

        cid, size = _parse_ipfs_add_response(body)
        return AddResult(identifier=cid, size=size)

    def add(self, data: bytes, *, name: str, pin: bool) -> AddResult:
        return self.add_fileobj(name=name, fileobj=BytesIO(data), pin=pin)

    # ----------------------------
    # pin
    # ----------------------------

    def pin(self, identifier: str) -> None:
        cid = (identifier or "").strip()
        if not cid:
            raise PinFailure("missing_cid", {})
        try:
            status, body = self._rpc("/api/v0/pin/add", {"arg": cid, "recursive": "true"})
        except (OSError, http.client.HTTPException) as e:
            raise PinFailure("pin_request_failed", {"identifier": cid, "error": str(e)}) from e
        if not (200 <= status < 300):
            msg = body.decode("utf-8", errors="replace").strip() or f"http_status:{status}"
            raise PinFailure("pin_rejected", {"identifier": cid, "http_status": status, "body": msg[:300]})

    def is_pinned(self, identifier: str) -> bool:
        cid = (identifier or "").strip()
        if not cid:
            return False
        try:
            status, body = self._rpc("/api/v0/pin/ls", {"arg": cid, "type": "recursive"})
        except (OSError, http.client.HTTPException) as e:
            raise PinFailure("pin_status_failed", {"identifier": cid, "error": str(e)}) from e

        txt = body.decode("utf-8", errors="replace")
        if 200 <= status < 300:
            try:
                obj = json.loads(txt)
            except ValueError:
                return False
            keys = obj.get("Keys") if isinstance(obj, dict) else None
            return isinstance(keys, dict) and cid in keys
        # Kubo answers 500 with a message for unpinned paths.
        if "not pinned" in txt.lower():
            return False
        raise PinFailure("pin_status_failed", {"identifier": cid, "http_status": status, "body": txt[:300]})

    # ----------------------------
    # get
    # ----------------------------

    def get(self, identifier: str) -> Iterator[bytes]:
        cid = (identifier or "").strip()
        if not cid:
            raise StoreUnavailable("missing_cid", {})
        conn = self._conn()
        try:
            conn.request("POST", f"/api/v0/cat?{urllib.parse.urlencode({'arg': cid})}", body=b"")
            resp = conn.getresponse()
            if resp.status < 200 or resp.status >= 300:
                msg = resp.read().decode("utf-8", errors="replace").strip()
                conn.close()
                raise StoreUnavailable("ipfs_cat_failed", {"identifier": cid, "http_status": resp.status, "body": msg[:300]})
        except (OSError, http.client.HTTPException) as e:
            conn.close()
            raise StoreUnavailable("ipfs_cat_failed", {"identifier": cid, "error": str(e)}) from e

        return self._stream(conn, resp, cid)

    @staticmethod
    def _stream(conn: http.client.HTTPConnection, resp: http.client.HTTPResponse, cid: str) -> Iterator[bytes]:
        try:
            while True:
                try:
                    chunk = resp.read(_CHUNK)
                except (OSError, http.client.HTTPException) as e:
                    raise StoreUnavailable("ipfs_cat_failed", {"identifier": cid, "error": str(e)}) from e
                if not chunk:
                    break
                yield chunk
        finally:
            conn.close()
