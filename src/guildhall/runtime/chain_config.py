# src/guildhall/runtime/chain_config.py
from __future__ import annotations

"""Node configuration.

One JSON file, named by $GUILDHALL_CHAIN_CONFIG_PATH, overrides the defaults
field by field. A missing file path means the defaults, which are a signed-only
prod posture. Everything is validated up front so a bad file stops boot rather
than the first request.
"""

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from guildhall.ledger.constants import DEFAULT_CHAIN_ID

Json = Dict[str, Any]

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}

_ALLOWED_MODES = ("dev", "testnet", "prod")
_ALLOWED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ChainConfig:
    # Mixed into coupon digests, tx signatures and tx ids.
    chain_id: int = DEFAULT_CHAIN_ID
    node_id: str = "local-node"
    mode: str = "prod"

    # SQLite file holding the ledger snapshot and tx log.
    db_path: str = "./data/guildhall.db"
    # Deployment file (JSON or YAML) applied at boot; "" for none.
    org_config_path: str = ""

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    allow_unsigned_txs: bool = False
    log_level: str = "INFO"

    def env_vars(self) -> Dict[str, str]:
        return {
            "GUILDHALL_CHAIN_ID": str(self.chain_id),
            "GUILDHALL_NODE_ID": self.node_id,
            "GUILDHALL_MODE": self.mode,
            "GUILDHALL_DB_PATH": self.db_path,
            "GUILDHALL_ORG_CONFIG_PATH": self.org_config_path,
            "GUILDHALL_LOG_LEVEL": self.log_level,
            "GUILDHALL_ALLOW_UNSIGNED_TXS": "1" if self.allow_unsigned_txs else "0",
        }


def _as_int(v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError(f"expected an integer, got {v!r}")
    return int(v)


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"expected a boolean, got {v!r}")


def _as_text(v: Any) -> str:
    return str(v).strip()


_COERCE: Dict[str, Callable[[Any], Any]] = {
    "chain_id": _as_int,
    "node_id": _as_text,
    "mode": lambda v: _as_text(v).lower(),
    "db_path": _as_text,
    "org_config_path": _as_text,
    "api_host": _as_text,
    "api_port": _as_int,
    "allow_unsigned_txs": _as_bool,
    "log_level": lambda v: _as_text(v).upper(),
}


def validate_chain_config(cfg: ChainConfig) -> None:
    """Raise ValueError describing the first problem found."""
    if cfg.chain_id <= 0:
        raise ValueError(f"chain_id must be a positive integer; got: {cfg.chain_id!r}")
    if not cfg.node_id:
        raise ValueError("node_id must be a non-empty string")
    if cfg.mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")
    if not 0 < cfg.api_port <= 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")
    if not cfg.db_path:
        raise ValueError("db_path must be a non-empty string")
    if cfg.org_config_path and not Path(cfg.org_config_path).is_file():
        raise ValueError(f"org_config_path does not exist or is not a file: {cfg.org_config_path!r}")
    if cfg.log_level not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {_ALLOWED_LOG_LEVELS}; got: {cfg.log_level!r}")
    if cfg.allow_unsigned_txs and cfg.mode == "prod":
        raise ValueError("allow_unsigned_txs is not permitted in prod mode")


def default_chain_config() -> ChainConfig:
    return ChainConfig()


def chain_config_from_mapping(raw: Json) -> ChainConfig:
    """Overlay `raw` on the defaults. Null or blank values keep the default."""
    known = {f.name for f in fields(ChainConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"unknown chain config keys: {unknown}")

    overrides: Json = {}
    for key, value in raw.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        try:
            overrides[key] = _COERCE[key](value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"chain config {key}: {e}") from e

    cfg = replace(default_chain_config(), **overrides)
    validate_chain_config(cfg)
    return cfg


def read_chain_config_file(path: str) -> ChainConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("chain config must be a JSON object")
    return chain_config_from_mapping(raw)


def load_chain_config(*, config_path: Optional[str] = None) -> ChainConfig:
    p = config_path or os.environ.get("GUILDHALL_CHAIN_CONFIG_PATH")
    if p:
        return read_chain_config_file(p)
    cfg = default_chain_config()
    validate_chain_config(cfg)
    return cfg


def apply_chain_config_to_env(cfg: ChainConfig) -> None:
    """Export the config for code that reads GUILDHALL_* directly (sqlite pragmas, logging)."""
    validate_chain_config(cfg)
    os.environ.update(cfg.env_vars())


def describe_chain_config(cfg: ChainConfig) -> Json:
    return asdict(cfg)
