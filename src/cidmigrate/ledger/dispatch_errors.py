# src/cidmigrate/ledger/dispatch_errors.py
"""Dispatch-error decoding and retry classification.

An `ExtrinsicFailed` event carries the dispatch error as its first data
element. Ledger gateways report it either already decoded

    {"module": {"section": "market", "name": "InsufficientCurrency", "docs": [...]}}

or raw, as pallet index + error code

    {"module": {"index": 39, "error": "0x05000000"}}

or as one of the non-module kinds

    "Exhausted" | {"badOrigin": null} | {"token": "FundsUnavailable"} | ...

Raw module errors are resolved through an optional lookup supplied by the
ledger client; without one they are reported as module_<index>.error_<code>.
"""

from __future__ import annotations

from typing import Any, Callable, FrozenSet, Iterable, Optional, Tuple

from cidmigrate.ledger.types import ChainEvent, DispatchErrorInfo

# (index, error_code) -> (section, name, description)
ErrorLookup = Callable[[int, int], Optional[Tuple[str, str, str]]]

# Conditions an operator can fix between runs (top up balance, wait for the
# market to reopen). Anything else is a property of the order itself.
DEFAULT_RECOVERABLE: FrozenSet[str] = frozenset(
    {
        "balances.InsufficientBalance",
        "balances.LiquidityRestrictions",
        "market.InsufficientCurrency",
        "market.InsufficientPot",
        "market.PlaceOrderNotAvailable",
        "Token.FundsUnavailable",
        "Token.Frozen",
        "Exhausted",
        "Unavailable",
    }
)


def _cap(s: str) -> str:
    return s[:1].upper() + s[1:] if s else s


def _error_code(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    s = str(raw or "").strip()
    if s.startswith("0x"):
        b = bytes.fromhex(s[2:] or "00")
        return b[0] if b else 0
    return int(s or 0)


def _docs(raw: Any) -> str:
    if isinstance(raw, (list, tuple)):
        return " ".join(str(x).strip() for x in raw if str(x).strip())
    return str(raw or "").strip()


def _decode_module(mod: Any, lookup: Optional[ErrorLookup]) -> DispatchErrorInfo:
    if not isinstance(mod, dict):
        return DispatchErrorInfo(kind="Module", description=str(mod or ""))

    section = str(mod.get("section") or "").strip()
    name = str(mod.get("name") or "").strip()
    if section and name:
        return DispatchErrorInfo(kind="Module", module=section, name=name, description=_docs(mod.get("docs")))

    try:
        index = int(mod.get("index"))
        code = _error_code(mod.get("error"))
    except (TypeError, ValueError):
        return DispatchErrorInfo(kind="Module", description=f"undecodable module error: {mod!r}"[:300])

    if lookup is not None:
        found = lookup(index, code)
        if found is not None:
            section, name, desc = found
            return DispatchErrorInfo(kind="Module", module=section, name=name, description=desc)

    return DispatchErrorInfo(kind="Module", module=f"module_{index}", name=f"error_{code}")


def decode_dispatch_error(raw: Any, *, lookup: Optional[ErrorLookup] = None) -> DispatchErrorInfo:
    if raw is None:
        return DispatchErrorInfo(kind="Unknown")
    if isinstance(raw, str):
        return DispatchErrorInfo(kind=_cap(raw.strip()) or "Unknown")
    if not isinstance(raw, dict) or not raw:
        return DispatchErrorInfo(kind="Unknown", description=str(raw)[:300])

    key, value = next(iter(raw.items()))
    kind = _cap(str(key))
    if kind == "Module":
        return _decode_module(value, lookup)
    if value is None:
        return DispatchErrorInfo(kind=kind)
    if isinstance(value, dict) and value:
        sub, _ = next(iter(value.items()))
        return DispatchErrorInfo(kind=kind, name=_cap(str(sub)))
    return DispatchErrorInfo(kind=kind, name=_cap(str(value)))


def decode_failed_event(event: ChainEvent, *, lookup: Optional[ErrorLookup] = None) -> DispatchErrorInfo:
    data = event.data
    if isinstance(data, (list, tuple)):
        first = data[0] if data else None
    elif isinstance(data, dict) and ("dispatch_error" in data or "dispatchError" in data):
        first = data.get("dispatch_error", data.get("dispatchError"))
    else:
        first = data
    return decode_dispatch_error(first, lookup=lookup)


class DispatchErrorPolicy:
    """Decides whether a chain rejection is worth retrying on a later run."""

    def __init__(self, extra_recoverable: Iterable[str] = ()) -> None:
        self.recoverable: FrozenSet[str] = DEFAULT_RECOVERABLE | frozenset(s.strip() for s in extra_recoverable if s.strip())

    def is_recoverable(self, err: DispatchErrorInfo) -> bool:
        return err.qualified_name in self.recoverable or err.kind in self.recoverable
