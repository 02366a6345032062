# src/cidmigrate/ledger/order_schema.py
"""Storage-order transaction payload and ledger status document schemas.

Payloads are shape-checked before signing so a malformed order never reaches
the ledger; status documents are shape-checked as they arrive so the
confirmation state machine only ever sees well-typed updates.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cidmigrate.util.ipfs_cid import validate_ipfs_cid

Json = Dict[str, Any]

STORAGE_ORDER_TX_TYPE = "MARKET_PLACE_STORAGE_ORDER"


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class _ObjectOnlyModel(BaseModel):
    """Object-only model: keys may evolve."""

    model_config = ConfigDict(extra="allow")


class StorageOrderPayload(_StrictModel):
    cid: str
    size: int = Field(gt=0)
    tip: Literal[0] = 0
    memo: Literal[""] = ""

    @field_validator("cid")
    @classmethod
    def _cid_is_valid(cls, v: str) -> str:
        res = validate_ipfs_cid(v)
        if not res.ok:
            raise ValueError(res.reason)
        return res.cid

    def to_json(self) -> Json:
        return self.model_dump()


class TxStatusDoc(_ObjectOnlyModel):
    ok: bool = True
    status: str = "pending"
    block_hash: str = ""
    events: List[Any] = Field(default_factory=list)
    reason: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> str:
        return str(v or "pending").strip().lower()

    @field_validator("block_hash", "reason", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("events", mode="before")
    @classmethod
    def _events(cls, v: Any) -> List[Any]:
        return list(v or [])
