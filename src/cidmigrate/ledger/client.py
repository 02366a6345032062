# src/cidmigrate/ledger/client.py
from __future__ import annotations

import logging
import time
import urllib.parse
from typing import Any, Callable, Dict, Iterator, Optional, Protocol, Tuple

from pydantic import ValidationError

from cidmigrate.errors import LedgerError, LedgerUnavailable, TransportError
from cidmigrate.ledger.order_schema import TxStatusDoc
from cidmigrate.ledger.types import (
    Broadcast,
    Finalized,
    InBlock,
    Pending,
    StatusEvent,
    StreamError,
    as_events,
)
from cidmigrate.net.http_json import JsonHttpConnection
from cidmigrate.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("cidmigrate.ledger")

_PENDING_STATUSES = {"pending", "ready", "future", "retracted"}
_ERROR_STATUSES = {"dropped", "invalid", "usurped", "error", "finality_timeout"}


class LedgerClient(Protocol):
    def next_nonce(self, signer: str) -> int: ...

    def submit_signed(self, envelope: Json) -> Iterator[StatusEvent]: ...

    def lookup_error(self, index: int, code: int) -> Optional[Tuple[str, str, str]]: ...


def status_doc_to_event(doc: TxStatusDoc) -> StatusEvent:
    if not doc.ok:
        return StreamError(doc.reason or "ledger_reported_error")
    st = doc.status
    if st == "broadcast":
        return Broadcast()
    if st == "in_block":
        return InBlock(block_ref=doc.block_hash, events=as_events(doc.events))
    if st == "finalized":
        return Finalized(block_ref=doc.block_hash, events=as_events(doc.events))
    if st in _ERROR_STATUSES:
        return StreamError(f"{st}:{doc.reason}" if doc.reason else st)
    if st in _PENDING_STATUSES:
        return Pending(status=st)
    return StreamError(f"unknown_status:{st}")


class HttpLedgerClient:
    """JSON-over-HTTP ledger gateway client.

    Endpoints:
      GET  /v1/status                      readiness probe
      GET  /v1/metadata/errors             pallet error table (optional)
      GET  /v1/accounts/{signer}/nonce     -> {"ok", "nonce"}
      POST /v1/tx/submit                   signed envelope -> {"ok", "tx_id"}
      GET  /v1/tx/status/{tx_id}           -> {"ok", "status", "block_hash", "events", "reason"}

    The gateway is polled; submit_signed() turns polling into a stream that
    yields one StatusEvent per observed change and stops at a terminal status.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_s: float = 30.0,
        confirm_timeout_s: float = 180.0,
        poll_interval_s: float = 2.0,
        max_poll_failures: int = 3,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        http: Optional[JsonHttpConnection] = None,
    ) -> None:
        self.endpoint = endpoint
        self.http = http or JsonHttpConnection(endpoint, timeout_s=timeout_s)
        self.confirm_timeout_s = float(confirm_timeout_s)
        self.poll_interval_s = float(poll_interval_s)
        self.max_poll_failures = max(1, int(max_poll_failures))
        self._sleep = sleep
        self._clock = clock
        self._errors: Dict[Tuple[int, int], Tuple[str, str, str]] = {}

    # ----------------------------
    # lifecycle
    # ----------------------------

    def connect(self) -> Json:
        self.http.open()
        try:
            doc = self._probe()
            self._load_error_table()
        except BaseException:
            # __exit__ never runs when __enter__ raises.
            self.close()
            raise
        log_event(log, "ledger_connected", endpoint=self.endpoint, chain=doc.get("chain"), height=doc.get("height"))
        return doc

    def _probe(self) -> Json:
        try:
            status, doc = self.http.request("GET", "/v1/status")
        except TransportError as e:
            raise LedgerUnavailable("ledger_unreachable", self.endpoint, str(e)) from e
        if status < 200 or status >= 300 or doc.get("ok") is False:
            raise LedgerUnavailable("ledger_not_ready", self.endpoint, {"status": status, "doc": doc})
        return doc

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "HttpLedgerClient":
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _load_error_table(self) -> None:
        try:
            status, doc = self.http.request("GET", "/v1/metadata/errors")
        except TransportError as e:
            log_event(log, "ledger_error_table_unavailable", level=logging.WARNING, reason=str(e))
            return
        if status < 200 or status >= 300:
            log_event(log, "ledger_error_table_unavailable", level=logging.WARNING, status=status)
            return

        rows = doc.get("errors")
        if not isinstance(rows, list):
            return
        for r in rows:
            if not isinstance(r, dict):
                continue
            try:
                key = (int(r["index"]), int(r["error"]))
            except (KeyError, TypeError, ValueError):
                continue
            docs = r.get("docs") or []
            desc = " ".join(str(x) for x in docs) if isinstance(docs, list) else str(docs)
            self._errors[key] = (str(r.get("section") or ""), str(r.get("name") or ""), desc.strip())

    def lookup_error(self, index: int, code: int) -> Optional[Tuple[str, str, str]]:
        return self._errors.get((int(index), int(code)))

    # ----------------------------
    # transactions
    # ----------------------------

    def next_nonce(self, signer: str) -> int:
        path = f"/v1/accounts/{urllib.parse.quote(signer, safe='')}/nonce"
        try:
            status, doc = self.http.request("GET", path)
        except TransportError as e:
            raise LedgerError("nonce_unavailable", signer, str(e)) from e
        if status < 200 or status >= 300 or not doc.get("ok"):
            raise LedgerError("nonce_unavailable", signer, {"status": status, "doc": doc})
        try:
            return int(doc.get("nonce", 0) or 0) + 1
        except (TypeError, ValueError) as e:
            raise LedgerError("nonce_unavailable", signer, doc) from e

    def submit(self, envelope: Json) -> str:
        try:
            status, doc = self.http.request("POST", "/v1/tx/submit", body=envelope)
        except TransportError as e:
            raise LedgerError("submit_failed", str(envelope.get("tx_type")), str(e)) from e
        tx_id = str(doc.get("tx_id") or "").strip()
        if status < 200 or status >= 300 or not doc.get("ok") or not tx_id:
            reason = str(doc.get("error") or doc.get("reason") or f"http_status:{status}")
            raise LedgerError("submit_rejected", reason, doc)
        return tx_id

    def watch(self, tx_id: str) -> Iterator[StatusEvent]:
        path = f"/v1/tx/status/{urllib.parse.quote(tx_id, safe='')}"
        deadline = self._clock() + self.confirm_timeout_s
        last: Optional[Tuple[str, str, int]] = None
        failures = 0

        while True:
            try:
                status, raw = self.http.request("GET", path)
                doc = TxStatusDoc.model_validate(raw)
                failures = 0
            except (TransportError, ValidationError) as e:
                failures += 1
                if failures >= self.max_poll_failures:
                    yield StreamError(f"status_poll_failed:{e}")
                    return
                status, doc = 0, None

            if doc is not None and status == 404:
                doc = None  # not indexed yet
            elif doc is not None and (status < 200 or status >= 300):
                yield StreamError(f"http_status:{status}:{doc.reason}")
                return

            if doc is not None:
                key = (doc.status, doc.block_hash, len(doc.events))
                if key != last:
                    last = key
                    ev = status_doc_to_event(doc)
                    yield ev
                    if isinstance(ev, (StreamError, Finalized)):
                        return

            if self._clock() >= deadline:
                yield StreamError("confirmation_timeout")
                return
            self._sleep(self.poll_interval_s)

    def submit_signed(self, envelope: Json) -> Iterator[StatusEvent]:
        """Submit now (raising LedgerError on failure); return the status stream."""
        tx_id = self.submit(envelope)
        log_event(log, "order_submitted", tx_id=tx_id, nonce=envelope.get("nonce"), signer=envelope.get("signer"))
        return self.watch(tx_id)
