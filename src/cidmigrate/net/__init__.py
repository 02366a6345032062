# src/cidmigrate/net/__init__.py
"""
Migrator network adapters.

  - http_json: keep-alive JSON-over-HTTP connection with explicit open/close
  - ipfs_stat: IPFS RPC `files/stat` client + SizeResolver

The ledger gateway client lives in cidmigrate.ledger.client and reuses
http_json for its transport.
"""

from __future__ import annotations

__all__ = [
    "http_json",
    "ipfs_stat",
]
