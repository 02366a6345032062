from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from cidmigrate.errors import LedgerError, LedgerUnavailable, TransportError
from cidmigrate.ledger.client import HttpLedgerClient, status_doc_to_event
from cidmigrate.ledger.order_schema import TxStatusDoc
from cidmigrate.ledger.types import Broadcast, Finalized, InBlock, Pending, StreamError

SUCCESS = {"section": "system", "method": "ExtrinsicSuccess", "data": []}


class _FakeHttp:
    """Scripted responses per (method, path); the last one repeats."""

    def __init__(self, routes: Dict[Tuple[str, str], List[Any]]) -> None:
        self.routes = {k: list(v) for k, v in routes.items()}
        self.calls: List[Tuple[str, str, Any]] = []
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def request(self, method: str, path: str, *, query=None, body=None, idempotent=None):
        self.calls.append((method, path, body))
        script = self.routes.get((method, path))
        if not script:
            raise TransportError("http_failed", f"{method} {path}", "no route")
        resp = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(resp, BaseException):
            raise resp
        return resp


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, s: float) -> None:
        self.sleeps.append(s)
        self.now += s


def _client(routes, **kw) -> Tuple[HttpLedgerClient, _FakeHttp, _Clock]:
    http = _FakeHttp(routes)
    clock = _Clock()
    client = HttpLedgerClient(
        "http://ledger.local",
        http=http,  # type: ignore[arg-type]
        sleep=clock.sleep,
        clock=clock,
        poll_interval_s=kw.pop("poll_interval_s", 2.0),
        **kw,
    )
    return client, http, clock


STATUS = ("GET", "/v1/tx/status/tx-1")


@pytest.mark.parametrize(
    "doc, expected",
    [
        ({"status": "Ready"}, Pending(status="ready")),
        ({"status": "broadcast"}, Broadcast()),
        ({"status": "in_block", "block_hash": "0xa", "events": [SUCCESS]}, InBlock),
        ({"status": "finalized", "block_hash": "0xa"}, Finalized),
        ({"status": "dropped", "reason": "replaced"}, StreamError("dropped:replaced")),
        ({"status": "teleported"}, StreamError("unknown_status:teleported")),
        ({"ok": False, "reason": "node syncing"}, StreamError("node syncing")),
    ],
)
def test_status_doc_to_event(doc, expected) -> None:
    ev = status_doc_to_event(TxStatusDoc.model_validate(doc))
    if isinstance(expected, type):
        assert isinstance(ev, expected)
        assert ev.block_ref == "0xa"
    else:
        assert ev == expected


def test_watch_yields_changes_until_finalized() -> None:
    in_block = {"status": "in_block", "block_hash": "0xa", "events": [SUCCESS]}
    client, http, clock = _client(
        {
            STATUS: [
                (404, {}),
                (200, {"status": "broadcast"}),
                (200, {"status": "broadcast"}),
                (200, in_block),
                (200, {"status": "finalized", "block_hash": "0xa", "events": [SUCCESS]}),
            ]
        }
    )

    events = list(client.watch("tx-1"))

    assert [type(e) for e in events] == [Broadcast, InBlock, Finalized]
    assert events[1].events[0].method == "ExtrinsicSuccess"
    assert len(clock.sleeps) == 4


def test_watch_times_out_with_stream_error() -> None:
    client, _, _ = _client({STATUS: [(200, {"status": "ready"})]}, confirm_timeout_s=5.0)

    events = list(client.watch("tx-1"))

    assert events == [Pending(status="ready"), StreamError("confirmation_timeout")]


def test_watch_gives_up_after_repeated_poll_failures() -> None:
    client, http, _ = _client({STATUS: [TransportError("http_failed", "GET", "refused")]}, max_poll_failures=3)

    events = list(client.watch("tx-1"))

    assert len(events) == 1
    assert isinstance(events[0], StreamError)
    assert events[0].reason.startswith("status_poll_failed")
    assert len(http.calls) == 3


def test_single_poll_failure_is_tolerated() -> None:
    client, _, _ = _client(
        {
            STATUS: [
                TransportError("http_failed", "GET", "reset"),
                (200, {"status": "finalized", "block_hash": "0xb", "events": [SUCCESS]}),
            ]
        }
    )

    events = list(client.watch("tx-1"))

    assert [type(e) for e in events] == [Finalized]


def test_watch_stops_on_server_error() -> None:
    client, _, _ = _client({STATUS: [(500, {"reason": "boom"})]})

    assert list(client.watch("tx-1")) == [StreamError("http_status:500:boom")]


def test_connect_loads_error_table() -> None:
    client, http, _ = _client(
        {
            ("GET", "/v1/status"): [(200, {"ok": True, "chain": "dev", "height": 7})],
            ("GET", "/v1/metadata/errors"): [
                (
                    200,
                    {
                        "errors": [
                            {"index": "12", "error": 3, "section": "market", "name": "InsufficientPot", "docs": ["Pot", "empty"]},
                            {"index": "bad"},
                        ]
                    },
                )
            ],
        }
    )

    assert client.connect()["chain"] == "dev"
    assert http.opened
    assert client.lookup_error(12, 3) == ("market", "InsufficientPot", "Pot empty")
    assert client.lookup_error(1, 1) is None


def test_connect_without_error_table_still_succeeds() -> None:
    client, _, _ = _client({("GET", "/v1/status"): [(200, {"ok": True})]})

    client.connect()

    assert client.lookup_error(12, 3) is None


@pytest.mark.parametrize(
    "resp",
    [TransportError("http_failed", "GET /v1/status", "refused"), (503, {"ok": False})],
)
def test_connect_failure_is_ledger_unavailable(resp) -> None:
    client, http, _ = _client({("GET", "/v1/status"): [resp]})

    with pytest.raises(LedgerUnavailable):
        with client:
            pass
    assert http.closed


def test_next_nonce_is_one_past_last_used() -> None:
    client, http, _ = _client({("GET", "/v1/accounts/ab12/nonce"): [(200, {"ok": True, "nonce": 41})]})

    assert client.next_nonce("ab12") == 42


def test_next_nonce_failure() -> None:
    client, _, _ = _client({("GET", "/v1/accounts/ab12/nonce"): [(200, {"ok": False})]})

    with pytest.raises(LedgerError) as ei:
        client.next_nonce("ab12")
    assert ei.value.code == "nonce_unavailable"


def test_submit_rejected() -> None:
    client, _, _ = _client({("POST", "/v1/tx/submit"): [(400, {"ok": False, "error": "bad signature"})]})

    with pytest.raises(LedgerError) as ei:
        client.submit({"tx_type": "MARKET_PLACE_STORAGE_ORDER"})
    assert ei.value.code == "submit_rejected"
    assert ei.value.reason == "bad signature"


def test_submit_signed_submits_then_streams() -> None:
    client, http, _ = _client(
        {
            ("POST", "/v1/tx/submit"): [(200, {"ok": True, "tx_id": "tx-1"})],
            STATUS: [(200, {"status": "finalized", "block_hash": "0xc", "events": [SUCCESS]})],
        }
    )
    envelope = {"tx_type": "MARKET_PLACE_STORAGE_ORDER", "nonce": 1, "signer": "ab12"}

    stream = client.submit_signed(envelope)

    assert http.calls == [("POST", "/v1/tx/submit", envelope)]
    assert [type(e) for e in stream] == [Finalized]
