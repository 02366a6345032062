# src/cidmigrate/ledger/submitter.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from cidmigrate.crypto.sig import public_key_hex, sign_tx_envelope_dict
from cidmigrate.errors import LedgerError
from cidmigrate.ledger.client import LedgerClient
from cidmigrate.ledger.confirmation import ConfirmationTracker
from cidmigrate.ledger.dispatch_errors import DispatchErrorPolicy
from cidmigrate.ledger.order_schema import STORAGE_ORDER_TX_TYPE, StorageOrderPayload
from cidmigrate.ledger.types import FatalFailure, RecoverableFailure, SubmissionOutcome
from cidmigrate.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("cidmigrate.submitter")


class OrderSubmitter:
    """Builds, signs and submits one storage order, then awaits its outcome.

    One order is in flight at a time: the nonce is read fresh from the ledger
    before every submission.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        signing_seed: str,
        policy: Optional[DispatchErrorPolicy] = None,
    ) -> None:
        self.ledger = ledger
        self._seed = signing_seed
        self.signer = public_key_hex(signing_seed)
        self.policy = policy or DispatchErrorPolicy()

    def build_envelope(self, content_address: str, byte_size: int, nonce: int) -> Json:
        payload = StorageOrderPayload(cid=content_address, size=byte_size)
        tx: Json = {
            "tx_type": STORAGE_ORDER_TX_TYPE,
            "signer": self.signer,
            "nonce": int(nonce),
            "payload": payload.to_json(),
        }
        return sign_tx_envelope_dict(tx=tx, privkey=self._seed)

    def submit(self, content_address: str, byte_size: int) -> SubmissionOutcome:
        try:
            StorageOrderPayload(cid=content_address, size=byte_size)
        except ValidationError as e:
            return FatalFailure(f"invalid_order:{e.errors()[0].get('msg', 'invalid')}")

        try:
            nonce = self.ledger.next_nonce(self.signer)
            envelope = self.build_envelope(content_address, byte_size, nonce)
            log_event(log, "order_submitting", cid=content_address, size=byte_size, nonce=nonce)
            stream = self.ledger.submit_signed(envelope)
        except LedgerError as e:
            return RecoverableFailure(f"{e.code}:{e.reason}")

        tracker = ConfirmationTracker(
            label=content_address,
            policy=self.policy,
            error_lookup=self.ledger.lookup_error,
        )
        return tracker.consume(stream)
