# src/cidmigrate/ledger/confirmation.py
"""Transaction confirmation state machine.

Turns a push-style stream of status updates for one submitted transaction
into exactly one terminal SubmissionOutcome:

    SUBMITTED -> BROADCAST -> IN_BLOCK -> {FINALIZED | CHAIN_REJECTED}
    any non-terminal state -> STREAM_ERROR

Policy:
  - Inclusion in a block with an ExtrinsicSuccess event is success; deeper
    finality is not awaited.
  - ExtrinsicFailed is checked before ExtrinsicSuccess in the same event set
    and its dispatch error is decoded for the operator.
  - An in-block update carrying neither event keeps waiting; some ledgers
    deliver the events in a later update for the same status.
  - After the terminal outcome, further updates are ignored and the stream
    is closed.
"""

from __future__ import annotations

import enum
import logging
from typing import Iterable, Optional, Tuple

from cidmigrate.ledger.dispatch_errors import DispatchErrorPolicy, ErrorLookup, decode_failed_event
from cidmigrate.ledger.types import (
    Broadcast,
    ChainEvent,
    FatalFailure,
    Finalized,
    InBlock,
    Pending,
    RecoverableFailure,
    StatusEvent,
    StreamError,
    SubmissionOutcome,
    Success,
)
from cidmigrate.structured_logging import log_event

log = logging.getLogger("cidmigrate.confirmation")

EXTRINSIC_SUCCESS = "ExtrinsicSuccess"
EXTRINSIC_FAILED = "ExtrinsicFailed"


class TxState(str, enum.Enum):
    SUBMITTED = "submitted"
    BROADCAST = "broadcast"
    IN_BLOCK = "in_block"
    FINALIZED = "finalized"
    CHAIN_REJECTED = "chain_rejected"
    STREAM_ERROR = "stream_error"


TERMINAL_STATES = frozenset({TxState.FINALIZED, TxState.CHAIN_REJECTED, TxState.STREAM_ERROR})


def _find(events: Tuple[ChainEvent, ...], method: str) -> Optional[ChainEvent]:
    for ev in events:
        if ev.method == method:
            return ev
    return None


class ConfirmationTracker:
    def __init__(
        self,
        *,
        label: str = "",
        policy: Optional[DispatchErrorPolicy] = None,
        error_lookup: Optional[ErrorLookup] = None,
    ) -> None:
        self.label = label
        self.policy = policy or DispatchErrorPolicy()
        self.error_lookup = error_lookup
        self.state = TxState.SUBMITTED
        self.outcome: Optional[SubmissionOutcome] = None
        self.updates_seen = 0

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _finish(self, state: TxState, outcome: SubmissionOutcome) -> SubmissionOutcome:
        self.state = state
        self.outcome = outcome
        return outcome

    def _inspect_block(self, block_ref: str, events: Tuple[ChainEvent, ...]) -> Optional[SubmissionOutcome]:
        failed = _find(events, EXTRINSIC_FAILED)
        if failed is not None:
            err = decode_failed_event(failed, lookup=self.error_lookup)
            reason = f"chain_rejected:{err}"
            if self.policy.is_recoverable(err):
                return self._finish(TxState.CHAIN_REJECTED, RecoverableFailure(reason))
            return self._finish(TxState.CHAIN_REJECTED, FatalFailure(reason))

        if _find(events, EXTRINSIC_SUCCESS) is not None:
            return self._finish(TxState.FINALIZED, Success(block_ref))
        return None

    def feed(self, update: StatusEvent) -> Optional[SubmissionOutcome]:
        """Apply one status update. Returns the outcome once, when it becomes terminal."""
        if self.done:
            return None
        self.updates_seen += 1

        if isinstance(update, StreamError):
            return self._finish(TxState.STREAM_ERROR, RecoverableFailure(f"stream_error:{update.reason}"))

        if isinstance(update, Broadcast):
            if self.state == TxState.SUBMITTED:
                self.state = TxState.BROADCAST
            return None

        if isinstance(update, InBlock):
            self.state = TxState.IN_BLOCK
            return self._inspect_block(update.block_ref, update.events)

        if isinstance(update, Finalized):
            out = self._inspect_block(update.block_ref, update.events)
            if out is not None:
                return out
            return self._finish(TxState.STREAM_ERROR, RecoverableFailure("finalized_without_outcome"))

        if isinstance(update, Pending):
            return None

        log_event(log, "tx_status_unknown", level=logging.WARNING, label=self.label, update=repr(update)[:200])
        return None

    def consume(self, stream: Iterable[StatusEvent]) -> SubmissionOutcome:
        """Drive the tracker from a stream until terminal, then detach from it."""
        it = iter(stream)
        try:
            for update in it:
                log_event(log, "tx_status", label=self.label, status=type(update).__name__, state=self.state.value)
                out = self.feed(update)
                if out is not None:
                    return out
        except Exception as e:  # transport failure while reading the stream
            return self._finish(TxState.STREAM_ERROR, RecoverableFailure(f"stream_error:{type(e).__name__}:{e}"))
        finally:
            close = getattr(it, "close", None)
            if callable(close):
                close()

        return self._finish(TxState.STREAM_ERROR, RecoverableFailure("stream_closed_without_outcome"))
