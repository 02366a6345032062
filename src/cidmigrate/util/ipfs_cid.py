# src/cidmigrate/util/ipfs_cid.py
"""IPFS CID validation helpers.

Validation is syntactic and dependency-free:
  - CIDv0 (base58btc) starts with "Qm" and is length 46.
  - CIDv1 base32 (lowercase, RFC4648 alphabet a-z2-7) starts with "b".
  - CIDv1 base58btc starts with "z"; CIDv1 base36 starts with "k".

This is NOT a full multiformats parser. Catalog rows also hold placeholders
such as "MIGRATED" or URLs; those must be rejected before anything is sent to
the content network or the ledger.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{58,}$")  # bafy..., bafk..., bagy...
_CIDV1_BASE58_RE = re.compile(r"^z[1-9A-HJ-NP-Za-km-z]{46,}$")
_CIDV1_BASE36_RE = re.compile(r"^k[0-9a-z]{48,}$")

_CID_PATTERNS = (_CIDV0_RE, _CIDV1_BASE32_RE, _CIDV1_BASE58_RE, _CIDV1_BASE36_RE)


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str | None) -> str:
    return (cid or "").strip()


def validate_ipfs_cid(cid: str | None, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    for pattern in _CID_PATTERNS:
        if pattern.match(c):
            return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def is_valid_cid(cid: str | None) -> bool:
    return validate_ipfs_cid(cid).ok
