# src/guildhall/runtime/executor_boot.py
from __future__ import annotations

import logging
import os
from typing import Optional

from guildhall.runtime.chain_config import ChainConfig, chain_config_from_mapping, describe_chain_config
from guildhall.runtime.event_log import log_event
from guildhall.runtime.executor import GuildExecutor
from guildhall.runtime.org_config import load_org_config

_log = logging.getLogger("guildhall.boot")

# Env var -> ChainConfig field, the inverse of ChainConfig.env_vars().
_ENV_FIELDS = {
    "GUILDHALL_CHAIN_ID": "chain_id",
    "GUILDHALL_NODE_ID": "node_id",
    "GUILDHALL_MODE": "mode",
    "GUILDHALL_DB_PATH": "db_path",
    "GUILDHALL_ORG_CONFIG_PATH": "org_config_path",
    "GUILDHALL_LOG_LEVEL": "log_level",
    "GUILDHALL_ALLOW_UNSIGNED_TXS": "allow_unsigned_txs",
}


def config_from_env() -> ChainConfig:
    """Rebuild the node config from GUILDHALL_* variables; unset ones keep their defaults."""
    raw = {field: os.environ[var] for var, field in _ENV_FIELDS.items() if var in os.environ}
    return chain_config_from_mapping(raw)


def build_executor(cfg: Optional[ChainConfig] = None) -> GuildExecutor:
    """Open the ledger and, when a deployment file is configured, install it.

    `guildhall.api.app` calls this with no args after exporting the chain
    config to the environment.
    """
    c = cfg or config_from_env()
    ex = GuildExecutor(
        db_path=c.db_path,
        node_id=c.node_id,
        chain_id=c.chain_id,
        allow_unsigned=c.allow_unsigned_txs,
    )
    if c.org_config_path:
        ex.apply_org_config(load_org_config(c.org_config_path))
    log_event(_log, "executor_ready", tx_count=int(ex.state.get("tx_count", 0) or 0), **describe_chain_config(c))
    return ex
