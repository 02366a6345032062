# src/cidmigrate/ledger/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple, Union

Json = Dict[str, Any]


# ---------------------------------------------------------------------------
# On-chain events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainEvent:
    section: str
    method: str
    data: Any = None

    @staticmethod
    def from_json(j: Any) -> "ChainEvent":
        if isinstance(j, ChainEvent):
            return j
        if not isinstance(j, dict):
            return ChainEvent(section="", method=str(j or ""))
        return ChainEvent(
            section=str(j.get("section") or ""),
            method=str(j.get("method") or ""),
            data=j.get("data"),
        )


@dataclass(frozen=True)
class DispatchErrorInfo:
    """Decoded reason an extrinsic was rejected by on-chain logic."""

    kind: str  # "Module", "Token", "BadOrigin", ...
    module: str = ""
    name: str = ""
    description: str = ""

    @property
    def qualified_name(self) -> str:
        if self.module:
            return f"{self.module}.{self.name}"
        if self.name:
            return f"{self.kind}.{self.name}"
        return self.kind

    def __str__(self) -> str:
        if self.description:
            return f"{self.qualified_name}: {self.description}"
        return self.qualified_name


# ---------------------------------------------------------------------------
# Transaction status stream
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pending:
    """Ledger acknowledged the tx but has nothing new to report (ready/future)."""

    status: str = "pending"


@dataclass(frozen=True)
class Broadcast:
    pass


@dataclass(frozen=True)
class InBlock:
    block_ref: str
    events: Tuple[ChainEvent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Finalized:
    block_ref: str
    events: Tuple[ChainEvent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StreamError:
    reason: str


StatusEvent = Union[Pending, Broadcast, InBlock, Finalized, StreamError]


def as_events(events: Optional[Iterable[Any]]) -> Tuple[ChainEvent, ...]:
    return tuple(ChainEvent.from_json(e) for e in (events or ()))


# ---------------------------------------------------------------------------
# Submission outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    block_ref: str

    ok = True
    retryable = False


@dataclass(frozen=True)
class RecoverableFailure:
    reason: str

    ok = False
    retryable = True


@dataclass(frozen=True)
class FatalFailure:
    reason: str

    ok = False
    retryable = False


SubmissionOutcome = Union[Success, RecoverableFailure, FatalFailure]
