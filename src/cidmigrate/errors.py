from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class MigrateError(Exception):
    """Canonical error type for the migrator.

    Fatal startup errors and per-item errors share this shape so that the CLI
    and the orchestrator can log them uniformly.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


# ---------------------------------------------------------------------------
# Fatal at startup
# ---------------------------------------------------------------------------


class ConfigError(MigrateError):
    pass


class CheckpointCorrupt(MigrateError):
    pass


class CheckpointLocked(MigrateError):
    pass


class LedgerUnavailable(MigrateError):
    pass


class CatalogError(MigrateError):
    pass


# ---------------------------------------------------------------------------
# Per item
# ---------------------------------------------------------------------------


class StoreWriteError(MigrateError):
    pass


class SizeUnavailable(MigrateError):
    pass


class ContentNetworkError(MigrateError):
    pass


class LedgerError(MigrateError):
    pass


class TransportError(MigrateError):
    pass
