# src/cidmigrate/runtime/orchestrator.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Protocol

from cidmigrate.errors import SizeUnavailable, StoreWriteError
from cidmigrate.ledger.types import SubmissionOutcome, Success
from cidmigrate.runtime.worklist import WorkItem, WorkList
from cidmigrate.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("cidmigrate.orchestrator")


class SizeSource(Protocol):
    def resolve_size(self, content_address: str) -> int: ...


class Submitter(Protocol):
    def submit(self, content_address: str, byte_size: int) -> SubmissionOutcome: ...


class Checkpoint(Protocol):
    def mark_complete(self, content_address: str) -> None: ...


@dataclass
class RunSummary:
    discovered: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    already_migrated: int = 0
    duplicates: int = 0
    checkpoint_errors: int = 0
    dry_run: int = 0
    # Pending items left for a later run by max_items.
    deferred: int = 0

    def to_json(self) -> Json:
        return asdict(self)


class Orchestrator:
    """Sequential migration loop.

    Per item: resolve size -> submit and await outcome -> checkpoint on success.
    No single item can abort the run; every per-item error becomes a logged
    outcome and a counter in the RunSummary.
    """

    def __init__(
        self,
        *,
        sizes: SizeSource,
        submitter: Submitter,
        checkpoint: Checkpoint,
        dry_run: bool = False,
        max_items: int = 0,
    ) -> None:
        self.sizes = sizes
        self.submitter = submitter
        self.checkpoint = checkpoint
        self.dry_run = bool(dry_run)
        self.max_items = max(0, int(max_items))

    def _fail(self, summary: RunSummary, work: WorkItem, reason: str, *, retryable: bool = True) -> None:
        summary.failed += 1
        log_event(
            log,
            "item_failed",
            level=logging.ERROR,
            cid=work.content_address,
            identifier=work.identifier,
            source=work.source_kind.value if work.source_kind else None,
            reason=reason,
            retry_next_run=retryable,
        )

    def _process(self, work: WorkItem, summary: RunSummary) -> None:
        cid = work.content_address

        try:
            work.byte_size = self.sizes.resolve_size(cid)
        except SizeUnavailable as e:
            self._fail(summary, work, f"{e.code}:{e.details}")
            return

        if self.dry_run:
            summary.dry_run += 1
            log_event(log, "item_dry_run", cid=cid, size=work.byte_size)
            return

        outcome = self.submitter.submit(cid, work.byte_size)
        if not isinstance(outcome, Success):
            self._fail(summary, work, outcome.reason, retryable=outcome.retryable)
            return

        try:
            self.checkpoint.mark_complete(cid)
        except StoreWriteError as e:
            # The order is on chain; a lost record only risks a duplicate order next run.
            summary.succeeded += 1
            summary.checkpoint_errors += 1
            log_event(
                log,
                "checkpoint_write_failed",
                level=logging.ERROR,
                cid=cid,
                block=outcome.block_ref,
                reason=str(e.details),
            )
            return

        summary.succeeded += 1
        log_event(log, "item_migrated", cid=cid, size=work.byte_size, block=outcome.block_ref)

    def run(self, work_list: WorkList) -> RunSummary:
        summary = RunSummary(
            discovered=work_list.discovered,
            skipped=work_list.skipped_invalid,
            already_migrated=work_list.already_migrated,
            duplicates=work_list.duplicates,
        )

        items = work_list.items
        if self.max_items:
            items = items[: self.max_items]
        summary.deferred = len(work_list.items) - len(items)

        if not items:
            log_event(log, "nothing_to_migrate", already_migrated=summary.already_migrated)

        for n, work in enumerate(items, start=1):
            log_event(
                log,
                "item_start",
                n=n,
                total=len(items),
                cid=work.content_address,
                identifier=work.identifier,
                source=work.source_kind.value if work.source_kind else None,
            )
            try:
                self._process(work, summary)
            except Exception as e:  # collaborator bug or unexpected transport error
                self._fail(summary, work, f"unexpected:{type(e).__name__}:{e}")

        log_event(log, "run_finished", **summary.to_json())
        return summary
