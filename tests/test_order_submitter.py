from __future__ import annotations

from cidmigrate.crypto.sig import canonical_tx_message, public_key_hex, verify_ed25519_signature
from cidmigrate.ledger.order_schema import STORAGE_ORDER_TX_TYPE
from cidmigrate.ledger.submitter import OrderSubmitter
from cidmigrate.ledger.types import (
    Broadcast,
    FatalFailure,
    InBlock,
    RecoverableFailure,
    StreamError,
    Success,
)
from cidmigrate.testing.fakes import FakeLedger, deterministic_seed, failed_event, ledger_down, make_cid

SEED = deterministic_seed(label="migrator")


def test_submits_signed_order_with_fixed_tip_and_memo() -> None:
    cid = make_cid("order")
    ledger = FakeLedger(nonce=41)
    sub = OrderSubmitter(ledger, signing_seed=SEED)

    out = sub.submit(cid, 2048)

    assert isinstance(out, Success)
    assert len(ledger.submitted) == 1
    env = ledger.submitted[0]
    assert env["tx_type"] == STORAGE_ORDER_TX_TYPE
    assert env["nonce"] == 42
    assert env["signer"] == public_key_hex(SEED)
    assert env["payload"] == {"cid": cid, "size": 2048, "tip": 0, "memo": ""}

    msg = canonical_tx_message(
        tx_type=env["tx_type"], signer=env["signer"], nonce=env["nonce"], payload=env["payload"]
    )
    assert verify_ed25519_signature(message=msg, sig=env["sig"], pubkey=env["signer"])


def test_nonce_advances_per_submission() -> None:
    ledger = FakeLedger(nonce=0)
    sub = OrderSubmitter(ledger, signing_seed=SEED)
    sub.submit(make_cid("1"), 10)
    sub.submit(make_cid("2"), 10)
    assert [e["nonce"] for e in ledger.submitted] == [1, 2]


def test_submit_raising_before_any_status_is_recoverable() -> None:
    cid = make_cid("down")
    ledger = FakeLedger({cid: ledger_down()})
    out = OrderSubmitter(ledger, signing_seed=SEED).submit(cid, 10)
    assert isinstance(out, RecoverableFailure)
    assert out.reason.startswith("submit_failed")


def test_stream_error_is_recoverable() -> None:
    cid = make_cid("dropped")
    ledger = FakeLedger({cid: [Broadcast(), StreamError("dropped")]})
    out = OrderSubmitter(ledger, signing_seed=SEED).submit(cid, 10)
    assert out == RecoverableFailure("stream_error:dropped")


def test_chain_rejection_is_fatal() -> None:
    cid = make_cid("rejected")
    err = {"module": {"section": "market", "name": "FileTooLarge", "docs": ["File is too large"]}}
    ledger = FakeLedger({cid: [Broadcast(), InBlock("0x9", (failed_event(err),))]})
    out = OrderSubmitter(ledger, signing_seed=SEED).submit(cid, 10)
    assert isinstance(out, FatalFailure)
    assert "market.FileTooLarge" in out.reason


def test_invalid_order_never_reaches_ledger() -> None:
    ledger = FakeLedger()
    sub = OrderSubmitter(ledger, signing_seed=SEED)

    assert isinstance(sub.submit(make_cid("z"), 0), FatalFailure)
    assert isinstance(sub.submit("not-a-cid", 10), FatalFailure)
    assert ledger.submitted == []


def test_stream_is_detached_after_terminal_outcome() -> None:
    cid = make_cid("detach")
    script = [
        Broadcast(),
        InBlock("0x1", (failed_event({"token": "FundsUnavailable"}),)),
        InBlock("0x2", ()),
    ]
    ledger = FakeLedger({cid: script})
    out = OrderSubmitter(ledger, signing_seed=SEED).submit(cid, 10)
    assert isinstance(out, RecoverableFailure)
    assert ledger.streams[0].pulled == 2
    assert ledger.streams[0].closed is True
