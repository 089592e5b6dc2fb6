from __future__ import annotations

from pathlib import Path

import pytest

from guildhall.ledger.constants import UNITS
from guildhall.runtime.apply.assets import native_balance
from guildhall.runtime.apply.bank import balance_of, is_member
from guildhall.runtime.executor import ExecutorError, GuildExecutor
from guildhall.runtime.org_config import parse_org_config
from guildhall.testing.deployment import Deployment, deployment_for, onboard_eth_payload, org_config_dict
from guildhall.testing.sigtools import address_of


def _deployment() -> Deployment:
    return deployment_for()


def _org_config(dep: Deployment):
    return parse_org_config(org_config_dict(dep, native={address_of("alice"): 1000}))


def _executor(db: Path, chain_id: int = 1337) -> GuildExecutor:
    return GuildExecutor(db_path=str(db), node_id="test-node", chain_id=chain_id)


def _onboard_env(ex: GuildExecutor, dep: Deployment, *, nonce: int, value: int) -> dict:
    alice = address_of("alice")
    return {
        "tx_type": "ONBOARD_ETH",
        "sender": alice,
        "nonce": ex.view().get_nonce(alice) + 1,
        "payload": onboard_eth_payload(dep, member=alice, nonce=nonce),
        "value": value,
    }


def test_org_config_installs_deployment_and_custody(tmp_path: Path) -> None:
    dep = _deployment()
    ex = _executor(tmp_path / "guildhall.db")
    results = ex.apply_org_config(_org_config(dep))
    assert all(r["ok"] for r in results)

    st = ex.read_state()
    assert st["onboarding"]["address"] == dep.onboarding
    assert st["custody"]["initialized"] is True
    assert st["custody"]["organization"] == dep.org
    assert native_balance(st, address_of("alice")) == 1000


def test_commit_survives_restart(tmp_path: Path) -> None:
    db = tmp_path / "guildhall.db"
    dep = _deployment()
    alice = address_of("alice")

    ex = _executor(db)
    ex.apply_org_config(_org_config(dep))
    res = ex.execute(_onboard_env(ex, dep, nonce=1, value=250))
    assert res["ok"] is True
    assert len(res["tx_id"]) == 64
    before = ex.read_state()

    ex2 = _executor(db)
    after = ex2.read_state()
    assert after == before
    assert balance_of(after, dep.org, alice, UNITS) == 2
    assert is_member(after, dep.org, alice)

    log = ex2.tx_log(limit=1)
    assert log[0]["tx_id"] == res["tx_id"]
    assert log[0]["ok"] is True
    assert log[0]["tx_type"] == "ONBOARD_ETH"


def test_rejected_tx_is_logged_but_not_committed(tmp_path: Path) -> None:
    dep = _deployment()
    ex = _executor(tmp_path / "guildhall.db")
    ex.apply_org_config(_org_config(dep))
    tx_count = ex.read_state()["tx_count"]

    res = ex.execute(_onboard_env(ex, dep, nonce=1, value=50))
    assert res["ok"] is False
    assert res["error"]["code"] == "below_minimum"
    assert ex.read_state()["tx_count"] == tx_count
    assert native_balance(ex.read_state(), address_of("alice")) == 1000

    entry = ex.tx_log(limit=1)[0]
    assert entry["ok"] is False
    assert entry["code"] == "below_minimum"


def test_malformed_envelope_is_rejected_not_raised(tmp_path: Path) -> None:
    ex = _executor(tmp_path / "guildhall.db")
    res = ex.execute({"tx_type": "NATIVE_TRANSFER", "sender": address_of("alice"), "nonce": "x", "payload": {}})
    assert res["ok"] is False
    assert res["error"]["code"] == "invalid_request"


def test_chain_id_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db = tmp_path / "guildhall.db"
    _executor(db, chain_id=1337)
    with pytest.raises(ExecutorError):
        _executor(db, chain_id=5)


def test_reapplying_org_config_does_not_mint_again(tmp_path: Path) -> None:
    db = tmp_path / "guildhall.db"
    dep = _deployment()
    cfg = _org_config(dep)

    _executor(db).apply_org_config(cfg)
    ex = _executor(db)
    ex.apply_org_config(cfg)

    assert native_balance(ex.read_state(), address_of("alice")) == 1000


def test_custody_bound_to_another_org_fails_boot(tmp_path: Path) -> None:
    db = tmp_path / "guildhall.db"
    dep = _deployment()
    _executor(db).apply_org_config(_org_config(dep))

    other = deployment_for(org_label="rival-guild")
    with pytest.raises(ExecutorError):
        _executor(db).apply_org_config(_org_config(other))


def test_submit_tx_requires_signature(tmp_path: Path) -> None:
    dep = _deployment()
    ex = _executor(tmp_path / "guildhall.db")
    ex.apply_org_config(_org_config(dep))

    res = ex.submit_tx(_onboard_env(ex, dep, nonce=1, value=100))
    assert res["ok"] is False
    assert res["error"]["code"] == "bad_sig"
