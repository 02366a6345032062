from __future__ import annotations

from pathlib import Path

import pytest

from cidmigrate.config import load_config, normalize_base_url
from cidmigrate.errors import ConfigError
from cidmigrate.testing.fakes import deterministic_seed

SEED = deterministic_seed(label="config")


def _env(**kw: str) -> dict:
    base = {
        "CIDMIGRATE_LEDGER_ENDPOINT": "http://ledger.local:9944/",
        "CIDMIGRATE_SIGNING_SEED": SEED,
        "CIDMIGRATE_CONTENT_GATEWAY_URL": "http://127.0.0.1:5001",
        "CIDMIGRATE_CATALOG_DB_PATH": "/data/catalog.db",
    }
    base.update(kw)
    return base


def test_env_only_config_with_defaults() -> None:
    cfg = load_config(environ=_env())

    assert cfg.ledger_endpoint == "http://ledger.local:9944"
    assert cfg.checkpoint_path == "./processed_cids.log"
    assert cfg.confirm_timeout_s == 180.0
    assert cfg.dry_run is False
    assert cfg.max_items == 0
    assert cfg.recoverable_dispatch_errors == ()


def test_seed_is_not_in_repr() -> None:
    cfg = load_config(environ=_env())
    assert SEED not in repr(cfg)


def test_missing_required_fields_are_named() -> None:
    with pytest.raises(ConfigError) as ei:
        load_config(environ={"CIDMIGRATE_SIGNING_SEED": SEED})

    assert ei.value.code == "config_missing"
    assert "CIDMIGRATE_LEDGER_ENDPOINT" in ei.value.reason
    assert "CIDMIGRATE_SIGNING_SEED" not in ei.value.reason


def test_yaml_then_env_then_overrides(tmp_path: Path) -> None:
    cfg_file = tmp_path / "migrate.yaml"
    cfg_file.write_text(
        "checkpoint_path: /var/lib/cidmigrate/done.log\n"
        "max_items: 10\n"
        "poll_interval_s: 0.5\n"
        "recoverable_dispatch_errors:\n"
        "  - market.OrderLimitReached\n",
        encoding="utf-8",
    )

    cfg = load_config(
        config_file=str(cfg_file),
        environ=_env(CIDMIGRATE_MAX_ITEMS="25"),
        overrides={"max_items": 3, "dry_run": None},
    )

    assert cfg.checkpoint_path == "/var/lib/cidmigrate/done.log"
    assert cfg.poll_interval_s == 0.5
    assert cfg.max_items == 3
    assert cfg.dry_run is False
    assert cfg.recoverable_dispatch_errors == ("market.OrderLimitReached",)


def test_unknown_yaml_key_rejected(tmp_path: Path) -> None:
    cfg_file = tmp_path / "migrate.yaml"
    cfg_file.write_text("ledger_endpiont: http://typo\n", encoding="utf-8")

    with pytest.raises(ConfigError) as ei:
        load_config(config_file=str(cfg_file), environ=_env())
    assert ei.value.details == ["ledger_endpiont"]


def test_seed_file(tmp_path: Path) -> None:
    seed_file = tmp_path / "seed.hex"
    seed_file.write_text(SEED + "\n", encoding="utf-8")
    env = _env(CIDMIGRATE_SIGNING_SEED_FILE=str(seed_file))
    del env["CIDMIGRATE_SIGNING_SEED"]

    assert load_config(environ=env).signing_seed == SEED


@pytest.mark.parametrize("seed", ["zz-not-a-key", "ab" * 16])
def test_bad_seed_rejected(seed: str) -> None:
    with pytest.raises(ConfigError):
        load_config(environ=_env(CIDMIGRATE_SIGNING_SEED=seed))


def test_recoverable_errors_from_env() -> None:
    cfg = load_config(environ=_env(CIDMIGRATE_RECOVERABLE_ERRORS="market.A, balances.B,"))
    assert cfg.recoverable_dispatch_errors == ("market.A", "balances.B")

    with pytest.raises(ConfigError):
        load_config(environ=_env(CIDMIGRATE_RECOVERABLE_ERRORS="NoSection"))


@pytest.mark.parametrize(
    "url",
    ["ws://ledger.local:9944", "http://", "http://host/path?x=1", ""],
)
def test_bad_urls_rejected(url: str) -> None:
    with pytest.raises(ConfigError):
        normalize_base_url(url, name="ledger_endpoint")


def test_numeric_fields_validated() -> None:
    with pytest.raises(ConfigError):
        load_config(environ=_env(CIDMIGRATE_MAX_ITEMS="-1"))
    with pytest.raises(ConfigError):
        load_config(environ=_env(CIDMIGRATE_CONFIRM_TIMEOUT_S="soon"))
