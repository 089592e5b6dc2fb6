from __future__ import annotations

import copy
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List

from guildhall.ledger.constants import SYSTEM_SENDER
from guildhall.ledger.state import GuildView
from guildhall.runtime.chain_config import load_chain_config
from guildhall.runtime.domain_apply import apply_tx_atomic
from guildhall.runtime.domain_dispatch import _normalize_envelope
from guildhall.runtime.errors import GuildError, InvalidRequest
from guildhall.runtime.event_log import log_event
from guildhall.runtime.metrics import inc_counter, set_gauge
from guildhall.runtime.org_config import OrgConfigFile, custody_org, to_system_txs
from guildhall.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from guildhall.runtime.tx_admission import admit_tx
from guildhall.runtime.tx_admission_types import TxEnvelope
from guildhall.runtime.tx_id import compute_tx_id_from_envelope, tx_id_or_empty

Json = Dict[str, Any]

_log = logging.getLogger("guildhall.executor")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ensure_parent(path: str) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)


class ExecutorError(RuntimeError):
    pass


class GuildExecutor:
    """Single-writer executor: applies envelopes and persists each commit to SQLite."""

    def __init__(
        self,
        *,
        db_path: str,
        node_id: str,
        chain_id: int,
        allow_unsigned: bool = False,
    ) -> None:
        self.node_id = str(node_id)
        self.chain_id = int(chain_id)
        self.allow_unsigned = bool(allow_unsigned)

        self.db_path = str(db_path)
        _ensure_parent(self.db_path)

        self._lock = threading.RLock()
        self._db = SqliteDB(path=self.db_path)
        self._db.init_schema()
        self._ledger_store = SqliteLedgerStore(db=self._db)

        if self._ledger_store.exists():
            self.state = self._ledger_store.read()
        else:
            self.state = self._initial_state()
            self._ledger_store.write(self.state)

        # Fail-closed on chain_id mismatch once state is present.
        st_chain_id = self.state.get("chain_id")
        if st_chain_id is not None and int(st_chain_id) != self.chain_id:
            raise ExecutorError(
                f"chain_id mismatch: db={st_chain_id!r} executor={self.chain_id!r}. Refuse to start."
            )
        if st_chain_id is None:
            self.state["chain_id"] = self.chain_id
            self._ledger_store.write(self.state)

        set_gauge("tx_count", int(self.state.get("tx_count", 0) or 0))

    def _initial_state(self) -> Json:
        return {
            "chain_id": self.chain_id,
            "tx_count": 0,
            "created_ms": _now_ms(),
            "accounts": {},
            "params": {},
        }

    # ----------------------------
    # Reads
    # ----------------------------

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def view(self) -> GuildView:
        with self._lock:
            return GuildView.from_ledger(self.state)

    def tx_log(self, limit: int = 100) -> List[Json]:
        return self._ledger_store.tx_log(limit=limit)

    # ----------------------------
    # Writes
    # ----------------------------

    def execute(self, env: Any) -> Json:
        """Apply one envelope and persist the result.

        Returns {"ok": True, "tx_id", "result"} on commit, or
        {"ok": False, "tx_id", "error"} when the domain rejected it. In the
        rejected case neither the in-memory nor the persisted state changes.
        """
        with self._lock:
            try:
                norm = _normalize_envelope(env)
                tx_id = compute_tx_id_from_envelope(self.chain_id, norm)
            except GuildError as e:
                return self._rejected(tx_id_or_empty(self.chain_id, env), env, e)
            except (TypeError, ValueError) as e:
                err = InvalidRequest("malformed_envelope", {"error": str(e)})
                return self._rejected("", env, err)

            working = copy.deepcopy(self.state)
            try:
                meta = apply_tx_atomic(working, norm)
            except GuildError as e:
                return self._rejected(tx_id, norm, e)

            working["tx_count"] = int(working.get("tx_count", 0) or 0) + 1
            self._ledger_store.commit(working, tx_id=tx_id, tx_type=norm.tx_type, sender=norm.sender)
            self.state = working

            self._count_commit(norm.tx_type, meta)
            set_gauge("tx_count", int(working["tx_count"]))
            log_event(
                _log,
                "tx_committed",
                tx_id=tx_id,
                tx_type=norm.tx_type,
                sender=norm.sender,
                tx_count=int(working["tx_count"]),
            )
            return {"ok": True, "tx_id": tx_id, "result": meta}

    def _rejected(self, tx_id: str, env: Any, err: GuildError) -> Json:
        if isinstance(env, TxEnvelope):
            tx_type, sender = env.tx_type, env.sender
        else:
            raw = env if isinstance(env, dict) else {}
            tx_type = str(raw.get("tx_type") or "")
            sender = str(raw.get("sender") or "")

        self._ledger_store.log_rejected(tx_id=tx_id, tx_type=tx_type, sender=sender, code=err.code)
        inc_counter("tx_rejected")
        log_event(
            _log,
            "tx_rejected",
            tx_id=tx_id,
            tx_type=tx_type,
            sender=sender,
            code=err.code,
            reason=err.reason,
            # domain_error means an applier raised something unexpected.
            level=logging.WARNING if err.code == "domain_error" else logging.INFO,
        )
        return {"ok": False, "tx_id": tx_id, "error": err.to_json()}

    @staticmethod
    def _count_commit(tx_type: str, meta: Json) -> None:
        inc_counter("tx_committed")
        if tx_type in {"ONBOARD", "ONBOARD_ETH"}:
            inc_counter("onboard_committed")
            if meta.get("new_member"):
                inc_counter("members_joined")

        hook = meta.get("custody") if isinstance(meta.get("custody"), dict) else {}
        if meta.get("registered") or hook.get("registered"):
            inc_counter("custody_registered")
        if tx_type == "CUSTODY_WITHDRAW":
            inc_counter("custody_withdrawn")

    def submit_tx(self, env: Any) -> Json:
        """Admission checks, then execute(). Used by the HTTP surface."""
        verdict = admit_tx(env, self.view(), allow_unsigned=self.allow_unsigned, chain_id=self.chain_id)
        if not verdict.ok:
            inc_counter("admission_rejected")
            log_event(_log, "tx_not_admitted", code=verdict.code, reason=verdict.reason)
            return {"ok": False, "error": verdict.rejection.to_json()}
        return self.execute(env)

    def apply_system_tx(self, tx_type: str, payload: Json) -> Json:
        return self.execute(
            {"tx_type": tx_type, "sender": SYSTEM_SENDER, "nonce": 0, "payload": dict(payload), "system": True}
        )

    def apply_org_config(self, cfg: OrgConfigFile) -> List[Json]:
        """Install a deployment file through system transactions.

        Allocations are minted only on a fresh ledger so restarts do not
        re-credit balances. Raises ExecutorError on the first rejection.
        """
        with self._lock:
            fresh = int(self.state.get("tx_count", 0) or 0) == 0
            results: List[Json] = []
            for env in to_system_txs(cfg, include_allocations=fresh):
                res = self.execute(env)
                if not res.get("ok"):
                    raise ExecutorError(f"org config tx {env['tx_type']} failed: {res.get('error')}")
                results.append(res)

            org = custody_org(cfg)
            if org is not None:
                custody = self.state.get("custody") if isinstance(self.state.get("custody"), dict) else {}
                if custody.get("initialized"):
                    bound = str(custody.get("organization") or "")
                    if bound != org.address:
                        raise ExecutorError(
                            f"custody registry already bound to {bound!r}; deployment names {org.address!r}"
                        )
                else:
                    res = self.apply_system_tx(
                        "CUSTODY_INITIALIZE",
                        {"organization": org.address, "admin": org.custody_admin},
                    )
                    if not res.get("ok"):
                        raise ExecutorError(f"custody initialization failed: {res.get('error')}")
                    results.append(res)

            log_event(_log, "org_config_applied", txs=len(results), organizations=len(cfg.organizations))
            return results

    # ----------------------------
    # Orchestration hooks
    # ----------------------------

    @classmethod
    def from_env(cls) -> "GuildExecutor":
        cfg = load_chain_config()
        return cls(
            db_path=cfg.db_path,
            node_id=cfg.node_id,
            chain_id=cfg.chain_id,
            allow_unsigned=cfg.allow_unsigned_txs,
        )


__all__ = ["ExecutorError", "GuildExecutor"]
