# src/cidmigrate/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import ExitStack
from typing import Any, Dict, List, Optional, Protocol

from cidmigrate.catalog.sqlite_catalog import CatalogItem, SqliteCatalog
from cidmigrate.config import MigrationConfig, load_config
from cidmigrate.env import load_dotenv_if_present
from cidmigrate.errors import ConfigError, MigrateError
from cidmigrate.ledger.client import HttpLedgerClient, LedgerClient
from cidmigrate.ledger.dispatch_errors import DispatchErrorPolicy
from cidmigrate.ledger.submitter import OrderSubmitter
from cidmigrate.net.ipfs_stat import ContentNetwork, IpfsStatClient, SizeResolver
from cidmigrate.runtime.orchestrator import Orchestrator, RunSummary
from cidmigrate.runtime.worklist import build_work_list
from cidmigrate.storage.checkpoint import CheckpointStore
from cidmigrate.storage.single_writer import SingleWriterLock
from cidmigrate.structured_logging import configure_structured_logging, log_event

log = logging.getLogger("cidmigrate")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


class Catalog(Protocol):
    def fetch_items(self) -> List[CatalogItem]: ...


def run_migration(
    cfg: MigrationConfig,
    *,
    catalog: Optional[Catalog] = None,
    network: Optional[ContentNetwork] = None,
    ledger: Optional[LedgerClient] = None,
) -> RunSummary:
    """One full migration pass.

    Collaborators not passed in are built from cfg and entered as context
    managers, so every connection is released on success, per-item failure
    or fatal abort alike. Raises MigrateError subclasses for fatal startup
    problems.
    """
    with ExitStack() as stack:
        stack.enter_context(SingleWriterLock(f"{cfg.checkpoint_path}.lock"))
        checkpoint = CheckpointStore(cfg.checkpoint_path)

        if ledger is None:
            ledger = stack.enter_context(
                HttpLedgerClient(
                    cfg.ledger_endpoint,
                    timeout_s=cfg.http_timeout_s,
                    confirm_timeout_s=cfg.confirm_timeout_s,
                    poll_interval_s=cfg.poll_interval_s,
                )
            )
        if network is None:
            network = stack.enter_context(IpfsStatClient(cfg.content_gateway_url, timeout_s=cfg.http_timeout_s))
        if catalog is None:
            catalog = stack.enter_context(SqliteCatalog(path=cfg.catalog_db_path))

        items = catalog.fetch_items()
        log_event(log, "catalog_fetched", count=len(items))
        work_list = build_work_list(items, checkpoint)

        orchestrator = Orchestrator(
            sizes=SizeResolver(network),
            submitter=OrderSubmitter(
                ledger,
                signing_seed=cfg.signing_seed,
                policy=DispatchErrorPolicy(cfg.recoverable_dispatch_errors),
            ),
            checkpoint=checkpoint,
            dry_run=cfg.dry_run,
            max_items=cfg.max_items,
        )
        return orchestrator.run(work_list)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="cidmigrate",
        description="Place storage orders for every catalog CID not yet migrated (resumable).",
    )
    ap.add_argument("--config", dest="config_file", default=None, help="YAML config file (lowest precedence)")
    ap.add_argument("--checkpoint", dest="checkpoint_path", default=None)
    ap.add_argument("--catalog-db", dest="catalog_db_path", default=None)
    ap.add_argument("--dry-run", dest="dry_run", action="store_true", default=None)
    ap.add_argument("--max-items", dest="max_items", type=int, default=None)
    ap.add_argument("--log-level", dest="log_level", default=None)
    ap.add_argument("--env-file", dest="env_file", default=None, help="dotenv file (default ./.env)")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    # Load .env before anything reads CIDMIGRATE_* vars.
    load_dotenv_if_present(args.env_file)
    configure_structured_logging(args.log_level)

    overrides: Dict[str, Any] = {
        "checkpoint_path": args.checkpoint_path,
        "catalog_db_path": args.catalog_db_path,
        "dry_run": args.dry_run,
        "max_items": args.max_items,
        "log_level": args.log_level,
    }

    try:
        cfg = load_config(config_file=args.config_file, overrides=overrides)
    except ConfigError as e:
        log_event(log, "config_error", level=logging.ERROR, code=e.code, reason=e.reason, details=e.details)
        print(f"ERROR: {e.reason}", file=sys.stderr)
        return EXIT_CONFIG

    configure_structured_logging(cfg.log_level)
    log_event(
        log,
        "migration_start",
        ledger=cfg.ledger_endpoint,
        gateway=cfg.content_gateway_url,
        catalog=cfg.catalog_db_path,
        checkpoint=cfg.checkpoint_path,
        dry_run=cfg.dry_run,
    )

    try:
        summary = run_migration(cfg)
    except MigrateError as e:
        log_event(log, "fatal", level=logging.CRITICAL, code=e.code, reason=e.reason, details=str(e.details))
        print(f"FATAL: {e.code}: {e.reason}", file=sys.stderr)
        return EXIT_FATAL

    print(json.dumps(summary.to_json(), indent=2, sort_keys=True))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
