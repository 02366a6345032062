# src/cidmigrate/runtime/worklist.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from cidmigrate.catalog.sqlite_catalog import CatalogItem, SourceKind
from cidmigrate.structured_logging import log_event
from cidmigrate.util.ipfs_cid import validate_ipfs_cid

log = logging.getLogger("cidmigrate.worklist")


class CompletionLookup(Protocol):
    def has(self, content_address: str) -> bool: ...


@dataclass
class WorkItem:
    content_address: str
    # Metadata of the first catalog row that referenced this CID (logging only).
    identifier: str = ""
    source_kind: Optional[SourceKind] = None
    byte_size: Optional[int] = None


@dataclass
class WorkList:
    items: List[WorkItem] = field(default_factory=list)
    discovered: int = 0
    skipped_invalid: int = 0
    duplicates: int = 0
    already_migrated: int = 0

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def addresses(self) -> List[str]:
        return [w.content_address for w in self.items]


def build_work_list(catalog_items: Iterable[CatalogItem], checkpoint: CompletionLookup) -> WorkList:
    """Turn raw catalog rows into an ordered, deduplicated list of pending CIDs.

    Steps:
      1) drop rows whose CID is syntactically invalid (logged, counted as skipped)
      2) keep the first row per CID (later rows are duplicates)
      3) drop CIDs the checkpoint already holds
      4) keep discovery order

    Pure: no network or chain I/O.
    """
    out = WorkList()
    first_seen: Dict[str, WorkItem] = {}

    for item in catalog_items:
        out.discovered += 1

        v = validate_ipfs_cid(item.content_address)
        if not v.ok:
            out.skipped_invalid += 1
            log_event(
                log,
                "cid_invalid_skipped",
                level=logging.WARNING,
                cid=str(item.content_address)[:200],
                reason=v.reason,
                source=item.source_kind.value,
                identifier=item.identifier,
            )
            continue

        if v.cid in first_seen:
            out.duplicates += 1
            continue

        first_seen[v.cid] = WorkItem(content_address=v.cid, identifier=item.identifier, source_kind=item.source_kind)

    # dict preserves insertion order == discovery order
    for cid, work in first_seen.items():
        if checkpoint.has(cid):
            out.already_migrated += 1
            continue
        out.items.append(work)

    log_event(
        log,
        "worklist_built",
        discovered=out.discovered,
        valid=out.discovered - out.skipped_invalid,
        unique=len(first_seen),
        already_migrated=out.already_migrated,
        pending=len(out.items),
        skipped_invalid=out.skipped_invalid,
    )
    return out
