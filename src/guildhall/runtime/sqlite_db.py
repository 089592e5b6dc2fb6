# src/guildhall/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

Json = Dict[str, Any]

_SYNCHRONOUS_LEVELS = ("OFF", "NORMAL", "FULL", "EXTRA")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS ledger_state (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      tx_count INTEGER NOT NULL,
      state_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tx_log (
      seq INTEGER PRIMARY KEY AUTOINCREMENT,
      tx_id TEXT NOT NULL,
      tx_type TEXT NOT NULL,
      sender TEXT NOT NULL,
      ok INTEGER NOT NULL,
      code TEXT NOT NULL,
      ts_ms INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tx_log_tx_id ON tx_log(tx_id)",
    "CREATE INDEX IF NOT EXISTS idx_tx_log_sender ON tx_log(sender)",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def _env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}


def _encode_state(st: Json) -> str:
    # No default=str: a non-JSON value in ledger state must fail the write.
    return json.dumps(st, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def synchronous_level() -> str:
    """FULL in prod, NORMAL elsewhere; GUILDHALL_SQLITE_SYNCHRONOUS overrides with a valid level."""
    mode = (os.environ.get("GUILDHALL_MODE") or "prod").strip().lower()
    default = "FULL" if mode == "prod" else "NORMAL"
    level = (os.environ.get("GUILDHALL_SQLITE_SYNCHRONOUS") or "").strip().upper()
    return level if level in _SYNCHRONOUS_LEVELS else default


def _is_lock_contention(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


class SqliteDB:
    """One SQLite file holding the ledger snapshot and the tx log.

    Every operation opens its own connection, so the object is safe to share
    across threads. Writers take BEGIN IMMEDIATE and retry on lock contention
    until GUILDHALL_SQLITE_WRITE_DEADLINE_MS runs out.
    """

    # Stored in PRAGMA user_version.
    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    def _open(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        timeout_ms = _env_int("GUILDHALL_SQLITE_CONNECT_TIMEOUT_MS", 30_000)
        # isolation_level=None: transactions are started explicitly in write_tx().
        con = sqlite3.connect(self.path, timeout=timeout_ms / 1000.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row
        try:
            self._configure(con, timeout_ms)
        except BaseException:
            con.close()
            raise
        return con

    @staticmethod
    def _configure(con: sqlite3.Connection, timeout_ms: int) -> None:
        journal = str(con.execute("PRAGMA journal_mode=WAL").fetchone()[0]).lower()
        if journal != "wal" and not _env_flag("GUILDHALL_SQLITE_ALLOW_NON_WAL"):
            raise RuntimeError(f"sqlite journal_mode is {journal!r}, expected 'wal'")
        con.execute(f"PRAGMA synchronous={synchronous_level()}")
        con.execute("PRAGMA foreign_keys=ON")
        con.execute("PRAGMA temp_store=MEMORY")
        busy_ms = max(0, _env_int("GUILDHALL_SQLITE_BUSY_TIMEOUT_MS", timeout_ms))
        con.execute(f"PRAGMA busy_timeout={busy_ms}")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        with closing(self._open()) as con:
            yield con

    def _begin_immediate(self, con: sqlite3.Connection) -> None:
        deadline = _now_ms() + max(250, _env_int("GUILDHALL_SQLITE_WRITE_DEADLINE_MS", 30_000))
        base_s = max(1, _env_int("GUILDHALL_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0
        cap_s = max(base_s, _env_int("GUILDHALL_SQLITE_WRITE_BACKOFF_MAX_MS", 250) / 1000.0)
        attempt = 0
        while True:
            try:
                con.execute("BEGIN IMMEDIATE")
                return
            except sqlite3.OperationalError as e:
                if not _is_lock_contention(e) or _now_ms() >= deadline:
                    raise
            # Exponential backoff with jitter.
            time.sleep(min(cap_s, base_s * 2 ** min(attempt, 8)) * random.uniform(0.5, 1.5))
            attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """A write transaction: committed on clean exit, rolled back on any exception."""
        with self.connection() as con:
            self._begin_immediate(con)
            try:
                yield con
            except BaseException:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")

    def init_schema(self) -> None:
        """Create tables on a fresh file; refuse to open a file from another schema version."""
        with self.write_tx() as con:
            version = int(con.execute("PRAGMA user_version").fetchone()[0])
            if version not in (0, self.SCHEMA_VERSION):
                raise RuntimeError(
                    f"sqlite schema version mismatch: have={version} want={self.SCHEMA_VERSION}; refusing to start"
                )
            for stmt in _SCHEMA:
                con.execute(stmt)
            if version == 0:
                con.execute(f"PRAGMA user_version={self.SCHEMA_VERSION}")


class SqliteLedgerStore:
    """The ledger snapshot (a single row) plus an append-only tx log.

    commit() writes both in one transaction, so the tx log never runs ahead
    of the snapshot it describes.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1").fetchone()
        if row is None:
            raise FileNotFoundError(f"no ledger snapshot in {self._db.path}")
        st = json.loads(row["state_json"])
        if not isinstance(st, dict):
            raise ValueError("ledger snapshot is not a JSON object")
        return st

    @staticmethod
    def _put_state(con: sqlite3.Connection, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger snapshot must be a dict")
        con.execute(
            "INSERT OR REPLACE INTO ledger_state(id, tx_count, state_json, updated_ts_ms) VALUES(1, ?, ?, ?)",
            (int(st.get("tx_count", 0) or 0), _encode_state(st), _now_ms()),
        )

    @staticmethod
    def _append_log(con: sqlite3.Connection, *, tx_id: str, tx_type: str, sender: str, ok: bool, code: str) -> None:
        con.execute(
            "INSERT INTO tx_log(tx_id, tx_type, sender, ok, code, ts_ms) VALUES(?, ?, ?, ?, ?, ?)",
            (str(tx_id), str(tx_type), str(sender), 1 if ok else 0, str(code), _now_ms()),
        )

    def write(self, st: Json) -> None:
        with self._db.write_tx() as con:
            self._put_state(con, st)

    def commit(self, st: Json, *, tx_id: str, tx_type: str, sender: str, code: str = "ok") -> None:
        with self._db.write_tx() as con:
            self._put_state(con, st)
            self._append_log(con, tx_id=tx_id, tx_type=tx_type, sender=sender, ok=True, code=code)

    def log_rejected(self, *, tx_id: str, tx_type: str, sender: str, code: str) -> None:
        with self._db.write_tx() as con:
            self._append_log(con, tx_id=tx_id, tx_type=tx_type, sender=sender, ok=False, code=code)

    def tx_log(self, *, limit: int = 100) -> List[Json]:
        """Newest first."""
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT seq, tx_id, tx_type, sender, ok, code, ts_ms FROM tx_log ORDER BY seq DESC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
        out: List[Json] = []
        for r in rows:
            entry = dict(r)
            entry["ok"] = bool(entry["ok"])
            out.append(entry)
        return out
