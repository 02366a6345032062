# src/cidmigrate/net/http_json.py
from __future__ import annotations

import http.client
import json
import urllib.parse
from typing import Any, Dict, Mapping, Optional, Tuple

from cidmigrate.errors import TransportError

Json = Dict[str, Any]

_RETRYABLE_CONN_ERRORS = (http.client.RemoteDisconnected, ConnectionResetError, BrokenPipeError)


class JsonHttpConnection:
    """Long-lived keep-alive HTTP connection speaking JSON.

    One instance per remote service, opened once per run and closed on every
    exit path. Idempotent requests (GET by default) are retried once on a
    dropped keep-alive socket; others are never resent, since a resend could
    duplicate a submission.
    """

    def __init__(self, base_url: str, *, timeout_s: float = 30.0) -> None:
        u = urllib.parse.urlparse(base_url)
        self.scheme = (u.scheme or "http").lower()
        self.host = u.hostname or "127.0.0.1"
        self.port = int(u.port or (443 if self.scheme == "https" else 80))
        self.base_path = (u.path or "").rstrip("/")
        self.timeout_s = float(timeout_s)
        self._conn: Optional[http.client.HTTPConnection] = None

    def _new_conn(self) -> http.client.HTTPConnection:
        if self.scheme == "https":
            return http.client.HTTPSConnection(self.host, self.port, timeout=self.timeout_s)
        return http.client.HTTPConnection(self.host, self.port, timeout=self.timeout_s)

    def open(self) -> None:
        if self._conn is None:
            self._conn = self._new_conn()

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "JsonHttpConnection":
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _url(self, path: str, query: Optional[Mapping[str, str]]) -> str:
        qs = urllib.parse.urlencode(query or {})
        full = f"{self.base_path}{path}"
        return f"{full}?{qs}" if qs else full

    def _send(self, method: str, url: str, data: Optional[bytes]) -> Tuple[int, bytes]:
        if self._conn is None:
            self.open()
        assert self._conn is not None
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        self._conn.request(method, url, body=data, headers=headers)
        resp = self._conn.getresponse()
        return int(resp.status), resp.read()

    def request(
        self,
        method: str,
        path: str,
        *,
        query: Optional[Mapping[str, str]] = None,
        body: Optional[Json] = None,
        idempotent: Optional[bool] = None,
    ) -> Tuple[int, Json]:
        """Returns (status_code, json_object). Raises TransportError on I/O or decode failure."""
        method = method.upper().strip()
        url = self._url(path, query)
        data = None if body is None else json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")

        if idempotent is None:
            idempotent = method == "GET"
        attempts = 2 if idempotent else 1
        for attempt in range(attempts):
            try:
                status, raw = self._send(method, url, data)
                break
            except _RETRYABLE_CONN_ERRORS as e:
                self.close()
                if attempt + 1 >= attempts:
                    raise TransportError("http_connection_lost", f"{method} {url}", str(e)) from e
            except (OSError, http.client.HTTPException) as e:
                self.close()
                raise TransportError("http_failed", f"{method} {url}", str(e)) from e

        txt = raw.decode("utf-8", errors="replace").strip()
        if not txt:
            return status, {}
        try:
            doc = json.loads(txt)
        except ValueError as e:
            raise TransportError("bad_json", f"{method} {url} -> {status}", txt[:300]) from e
        if not isinstance(doc, dict):
            return status, {"value": doc}
        return status, doc
