# src/cidmigrate/catalog/sqlite_catalog.py
from __future__ import annotations

import enum
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from cidmigrate.errors import CatalogError
from cidmigrate.structured_logging import log_event

log = logging.getLogger("cidmigrate.catalog")


class SourceKind(str, enum.Enum):
    VIDEO = "Video"
    VIDEO_CLIP = "VideoClip"


@dataclass(frozen=True)
class CatalogItem:
    identifier: str
    content_address: str
    source_kind: SourceKind


@dataclass(frozen=True)
class CatalogSource:
    kind: SourceKind
    table: str
    id_column: str
    cid_column: str = "ipfs_cid"


# Primary media first, then derived clips: this is the discovery order.
DEFAULT_SOURCES: Sequence[CatalogSource] = (
    CatalogSource(kind=SourceKind.VIDEO, table="video", id_column="video_id"),
    CatalogSource(kind=SourceKind.VIDEO_CLIP, table="video_clip", id_column="clip_id"),
)


def _quote_ident(name: str) -> str:
    if not name or not all(ch.isalnum() or ch == "_" for ch in name):
        raise CatalogError("catalog_bad_identifier", name)
    return f'"{name}"'


class SqliteCatalog:
    """Read-only view over the media catalog.

    Opened with mode=ro so a migration run can never modify catalog rows.
    """

    def __init__(self, *, path: str, sources: Sequence[CatalogSource] = DEFAULT_SOURCES) -> None:
        self.path = str(path)
        self.sources = tuple(sources)
        self._con: Optional[sqlite3.Connection] = None

    def open(self) -> None:
        if self._con is not None:
            return
        p = Path(self.path)
        if not p.is_file():
            raise CatalogError("catalog_missing", self.path)
        try:
            con = sqlite3.connect(f"{p.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise CatalogError("catalog_unreadable", self.path, str(e)) from e
        con.row_factory = sqlite3.Row
        self._con = con

    def close(self) -> None:
        if self._con is not None:
            try:
                self._con.close()
            finally:
                self._con = None

    def __enter__(self) -> "SqliteCatalog":
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _fetch_source(self, con: sqlite3.Connection, src: CatalogSource) -> List[CatalogItem]:
        table = _quote_ident(src.table)
        id_col = _quote_ident(src.id_column)
        cid_col = _quote_ident(src.cid_column)
        try:
            rows = con.execute(
                f"""
                SELECT {id_col} AS item_id, {cid_col} AS cid
                FROM {table}
                WHERE {cid_col} IS NOT NULL AND TRIM({cid_col}) != ''
                ORDER BY rowid ASC;
                """
            ).fetchall()
        except sqlite3.Error as e:
            raise CatalogError("catalog_query_failed", src.table, str(e)) from e

        return [
            CatalogItem(identifier=str(r["item_id"]), content_address=str(r["cid"]), source_kind=src.kind)
            for r in rows
        ]

    def fetch_items(self) -> List[CatalogItem]:
        """All records with a non-empty CID, sources merged in declaration order."""
        out: List[CatalogItem] = []
        if self._con is None:
            raise CatalogError("catalog_not_open", self.path)
        for src in self.sources:
            items = self._fetch_source(self._con, src)
            log_event(log, "catalog_source_fetched", source=src.kind.value, table=src.table, count=len(items))
            out.extend(items)
        return out
