# src/cidmigrate/net/ipfs_stat.py
from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

from cidmigrate.errors import ContentNetworkError, SizeUnavailable, TransportError
from cidmigrate.net.http_json import JsonHttpConnection
from cidmigrate.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("cidmigrate.ipfs")


class ContentNetwork(Protocol):
    def stat(self, content_address: str) -> Json: ...


def _safe_int(v: Any) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return 0


class IpfsStatClient:
    """IPFS HTTP RPC client (Kubo-compatible) limited to `files/stat`.

    POST {base}/api/v0/files/stat?arg=/ipfs/<cid>
      -> {"Hash": ..., "Size": ..., "CumulativeSize": ..., "Type": ...}
    """

    def __init__(self, base_url: str, *, timeout_s: float = 30.0) -> None:
        self.http = JsonHttpConnection(base_url, timeout_s=timeout_s)

    def open(self) -> None:
        self.http.open()

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "IpfsStatClient":
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def stat(self, content_address: str) -> Json:
        cid = content_address.strip()
        try:
            status, doc = self.http.request(
                "POST",
                "/api/v0/files/stat",
                query={"arg": f"/ipfs/{cid}"},
                idempotent=True,
            )
        except TransportError as e:
            raise ContentNetworkError("ipfs_unreachable", cid, str(e)) from e

        if status < 200 or status >= 300:
            # Kubo error payloads carry a human readable "Message".
            msg = str(doc.get("Message") or doc.get("message") or f"http_status:{status}")
            raise ContentNetworkError("ipfs_stat_failed", cid, msg[:300])
        return doc


class SizeResolver:
    """Resolve a CID's byte size from the content network.

    Zero is never a valid answer: an order for zero bytes is meaningless and
    means the content is not actually retrievable.
    """

    def __init__(self, network: ContentNetwork) -> None:
        self.network = network

    def resolve_size(self, content_address: str) -> int:
        try:
            st = self.network.stat(content_address)
        except ContentNetworkError as e:
            raise SizeUnavailable("size_unavailable", content_address, f"{e.code}:{e.reason}:{e.details}") from e

        # File size first, then the DAG's cumulative size.
        size = _safe_int(st.get("Size")) or _safe_int(st.get("CumulativeSize"))
        if size <= 0:
            raise SizeUnavailable("size_unavailable", content_address, "network reported zero size")

        log_event(log, "size_resolved", cid=content_address, size=size)
        return size
