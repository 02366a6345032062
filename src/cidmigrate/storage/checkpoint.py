# src/cidmigrate/storage/checkpoint.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Set

from cidmigrate.errors import CheckpointCorrupt, StoreWriteError
from cidmigrate.structured_logging import log_event
from cidmigrate.util.ipfs_cid import validate_ipfs_cid

log = logging.getLogger("cidmigrate.checkpoint")


@dataclass(frozen=True)
class CompletionRecord:
    content_address: str
    completed_at: Optional[str] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_line(line: str, lineno: int, path: Path) -> Optional[CompletionRecord]:
    text = line.strip()
    if not text:
        return None
    parts = text.split("\t")
    v = validate_ipfs_cid(parts[0])
    if not v.ok:
        raise CheckpointCorrupt(
            "checkpoint_corrupt",
            f"{path}:{lineno}: {v.reason}",
            text[:200],
        )
    completed_at = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
    return CompletionRecord(content_address=v.cid, completed_at=completed_at)


class CheckpointStore:
    """Append-only line log of migrated CIDs.

    Format (one record per line, human-inspectable):

        <cid>\\t<completed_at ISO-8601 UTC>

    Lines holding only a CID are accepted too.

    Guarantees:
      - A missing file is an empty store.
      - A present file that cannot be read or contains a line that is not a
        CID raises CheckpointCorrupt. Treating it as empty would resubmit
        every order.
      - mark_complete() is idempotent and returns only after the record is
        flushed and fsynced.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._records: List[CompletionRecord] = []
        self._done: Set[str] = set()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            log_event(log, "checkpoint_loaded", path=str(self.path), count=0, fresh=True)
            return

        try:
            data = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointCorrupt("checkpoint_unreadable", str(self.path), str(e)) from e

        for lineno, line in enumerate(data.splitlines(), start=1):
            rec = _parse_line(line, lineno, self.path)
            if rec is None or rec.content_address in self._done:
                continue
            self._done.add(rec.content_address)
            self._records.append(rec)

        log_event(log, "checkpoint_loaded", path=str(self.path), count=len(self._done), fresh=False)

    def has(self, content_address: str) -> bool:
        return content_address.strip() in self._done

    def _ends_with_newline(self) -> bool:
        """True for a missing/empty file or one whose last byte is a newline."""
        if not self.path.exists():
            return True
        with open(self.path, "rb") as fh:
            fh.seek(0, os.SEEK_END)
            if fh.tell() == 0:
                return True
            fh.seek(-1, os.SEEK_END)
            return fh.read(1) == b"\n"

    def mark_complete(self, content_address: str) -> None:
        cid = content_address.strip()
        if cid in self._done:
            return

        rec = CompletionRecord(content_address=cid, completed_at=_utc_now_iso())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            line = f"{rec.content_address}\t{rec.completed_at}\n"
            if not self._ends_with_newline():
                # Hand-edited or torn last line: never glue a record onto it.
                line = "\n" + line
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as e:
            raise StoreWriteError("checkpoint_write_failed", cid, str(e)) from e

        self._done.add(cid)
        self._records.append(rec)

    def completed(self) -> Set[str]:
        return set(self._done)

    def records(self) -> Iterator[CompletionRecord]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._done)
