from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from guildhall.runtime.sqlite_db import SqliteDB, SqliteLedgerStore


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    return row[0]


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GUILDHALL_MODE", "prod")
    monkeypatch.delenv("GUILDHALL_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("GUILDHALL_SQLITE_BUSY_TIMEOUT_MS", "1234")

    db = SqliteDB(path=str(tmp_path / "guildhall.db"))
    db.init_schema()

    with db.connection() as con:
        assert str(_pragma(con, "journal_mode")).lower() == "wal"
        # FULL is the prod default.
        assert int(_pragma(con, "synchronous")) == 2
        assert int(_pragma(con, "foreign_keys")) == 1
        assert int(_pragma(con, "busy_timeout")) == 1234


def test_synchronous_is_normal_outside_prod(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GUILDHALL_MODE", "dev")
    monkeypatch.delenv("GUILDHALL_SQLITE_SYNCHRONOUS", raising=False)
    db = SqliteDB(path=str(tmp_path / "guildhall.db"))
    db.init_schema()
    with db.connection() as con:
        assert int(_pragma(con, "synchronous")) == 1


def test_ledger_store_commit_and_log(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "nested" / "guildhall.db"))
    db.init_schema()
    store = SqliteLedgerStore(db=db)
    assert store.exists() is False

    store.write({"chain_id": 1, "tx_count": 0})
    store.commit({"chain_id": 1, "tx_count": 1, "x": [1, 2]}, tx_id="a" * 64, tx_type="NATIVE_MINT", sender="SYSTEM")
    store.log_rejected(tx_id="b" * 64, tx_type="ONBOARD", sender="0x" + "11" * 20, code="signature_invalid")

    assert store.exists() is True
    assert store.read() == {"chain_id": 1, "tx_count": 1, "x": [1, 2]}

    log = store.tx_log(limit=10)
    assert [e["ok"] for e in log] == [False, True]
    assert log[0]["code"] == "signature_invalid"
    assert log[1]["tx_id"] == "a" * 64


def test_non_json_state_fails_the_write(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "guildhall.db"))
    db.init_schema()
    store = SqliteLedgerStore(db=db)
    with pytest.raises(TypeError):
        store.write({"bad": object()})
    assert store.exists() is False
