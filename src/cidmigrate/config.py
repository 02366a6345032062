# src/cidmigrate/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse, urlunparse

import yaml

from cidmigrate.crypto.sig import decode_key_bytes
from cidmigrate.errors import ConfigError

ENV_PREFIX = "CIDMIGRATE_"

REQUIRED_FIELDS: Tuple[str, ...] = (
    "ledger_endpoint",
    "signing_seed",
    "content_gateway_url",
    "catalog_db_path",
)


@dataclass(frozen=True)
class MigrationConfig:
    ledger_endpoint: str
    signing_seed: str = field(repr=False)
    content_gateway_url: str
    catalog_db_path: str
    checkpoint_path: str = "./processed_cids.log"

    http_timeout_s: float = 30.0
    confirm_timeout_s: float = 180.0
    poll_interval_s: float = 2.0

    dry_run: bool = False
    max_items: int = 0  # 0 = unlimited

    # Extra "section.Name" dispatch errors an operator wants retried on the next run.
    recoverable_dispatch_errors: Tuple[str, ...] = ()

    log_level: str = "INFO"


def _is_truthy(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def normalize_base_url(url: str, *, name: str) -> str:
    """
    Normalize and validate an endpoint base URL.

    Rules:
      - http:// or https:// with a hostname
      - Strips trailing slashes
      - Rejects query/fragment
    """
    if not isinstance(url, str) or not url.strip():
        raise ConfigError("config_invalid", f"{name} must be a non-empty string")

    parsed = urlparse(url.strip())
    if parsed.query or parsed.fragment:
        raise ConfigError("config_invalid", f"{name} must not include query or fragment")

    scheme = (parsed.scheme or "").lower()
    if scheme not in {"http", "https"}:
        raise ConfigError("config_invalid", f"{name} must be http(s)", url)
    if not parsed.hostname:
        raise ConfigError("config_invalid", f"{name} must include a hostname", url)

    return urlunparse((scheme, parsed.netloc, parsed.path.rstrip("/"), "", "", ""))


def _read_secret(path: str) -> str:
    try:
        return Path(path).expanduser().read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError("config_invalid", "signing seed file unreadable", str(e)) from e


def read_yaml_config(path: str) -> Dict[str, Any]:
    """Read a YAML config file whose top-level keys are MigrationConfig field names."""
    p = Path(path).expanduser()
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError("config_unreadable", str(p), str(e)) from e
    except yaml.YAMLError as e:
        raise ConfigError("config_unparseable", str(p), str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("config_unparseable", f"{p} must contain a mapping")

    known = {f.name for f in fields(MigrationConfig)}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        raise ConfigError("config_invalid", "unknown config keys", unknown)
    return dict(data)


def _from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in fields(MigrationConfig):
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is not None and raw.strip():
            out[f.name] = raw.strip()

    seed_file = (environ.get(ENV_PREFIX + "SIGNING_SEED_FILE") or "").strip()
    if "signing_seed" not in out and seed_file:
        out["signing_seed"] = _read_secret(seed_file)

    errs = (environ.get(ENV_PREFIX + "RECOVERABLE_ERRORS") or "").strip()
    if errs:
        out["recoverable_dispatch_errors"] = errs
    return out


def _as_float(name: str, v: Any, *, minimum: float) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError) as e:
        raise ConfigError("config_invalid", f"{name} must be a number", v) from e
    if f < minimum:
        raise ConfigError("config_invalid", f"{name} must be >= {minimum}", v)
    return f


def _as_int(name: str, v: Any, *, minimum: int) -> int:
    try:
        i = int(v)
    except (TypeError, ValueError) as e:
        raise ConfigError("config_invalid", f"{name} must be an integer", v) from e
    if i < minimum:
        raise ConfigError("config_invalid", f"{name} must be >= {minimum}", v)
    return i


def _as_error_names(v: Any) -> Tuple[str, ...]:
    if isinstance(v, str):
        items = v.split(",")
    elif isinstance(v, (list, tuple)):
        items = [str(x) for x in v]
    else:
        raise ConfigError("config_invalid", "recoverable_dispatch_errors must be a list", v)

    out = []
    for raw in items:
        name = raw.strip()
        if not name:
            continue
        if "." not in name:
            raise ConfigError("config_invalid", "dispatch error names look like 'section.Name'", name)
        out.append(name)
    return tuple(out)


def _validate_seed(seed: str) -> str:
    try:
        b = decode_key_bytes(seed)
    except ValueError as e:
        raise ConfigError("config_invalid", "signing_seed must be hex or base64") from e
    if len(b) not in (32, 64):
        raise ConfigError("config_invalid", "signing_seed must decode to 32 or 64 bytes", len(b))
    return seed.strip()


def build_config(raw: Mapping[str, Any]) -> MigrationConfig:
    missing = [name for name in REQUIRED_FIELDS if not str(raw.get(name) or "").strip()]
    if missing:
        env_names = ", ".join(ENV_PREFIX + name.upper() for name in missing)
        raise ConfigError("config_missing", f"please define {env_names}", missing)

    return MigrationConfig(
        ledger_endpoint=normalize_base_url(str(raw["ledger_endpoint"]), name="ledger_endpoint"),
        signing_seed=_validate_seed(str(raw["signing_seed"])),
        content_gateway_url=normalize_base_url(str(raw["content_gateway_url"]), name="content_gateway_url"),
        catalog_db_path=str(raw["catalog_db_path"]).strip(),
        checkpoint_path=str(raw.get("checkpoint_path") or "./processed_cids.log").strip(),
        http_timeout_s=_as_float("http_timeout_s", raw.get("http_timeout_s", 30.0), minimum=0.1),
        confirm_timeout_s=_as_float("confirm_timeout_s", raw.get("confirm_timeout_s", 180.0), minimum=1.0),
        poll_interval_s=_as_float("poll_interval_s", raw.get("poll_interval_s", 2.0), minimum=0.0),
        dry_run=_is_truthy(raw.get("dry_run", False)),
        max_items=_as_int("max_items", raw.get("max_items", 0), minimum=0),
        recoverable_dispatch_errors=_as_error_names(raw.get("recoverable_dispatch_errors", ())),
        log_level=str(raw.get("log_level") or "INFO").strip().upper(),
    )


def load_config(
    *,
    config_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> MigrationConfig:
    """
    Build the validated run configuration.

    Precedence (lowest to highest): YAML file, environment, explicit overrides
    (CLI flags). Raises ConfigError on any missing or invalid field.
    """
    raw: Dict[str, Any] = {}
    if config_file:
        raw.update(read_yaml_config(config_file))
    raw.update(_from_env(os.environ if environ is None else environ))
    if overrides:
        raw.update({k: v for k, v in overrides.items() if v is not None})
    return build_config(raw)
