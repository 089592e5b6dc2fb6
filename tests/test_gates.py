from __future__ import annotations

import pytest

from guildhall.runtime.errors import GuildError
from guildhall.runtime.gates import (
    Capability,
    has_capability,
    parse_capabilities,
    parse_capability,
    require_capability,
    resolve_capability,
)
from guildhall.testing.deployment import deploy, run, system_tx, user_tx
from guildhall.util.address import address_from_label


def test_parse_capability_is_case_insensitive() -> None:
    assert parse_capability("new_member") is Capability.NEW_MEMBER
    assert parse_capability(Capability.COLLECT_NFT) is Capability.COLLECT_NFT
    assert parse_capability("MINT_EVERYTHING") is None


def test_parse_capabilities_dedupes_and_rejects_unknown() -> None:
    assert parse_capabilities(["NEW_MEMBER", "new_member", "ADD_TO_BALANCE"]) == [
        Capability.NEW_MEMBER,
        Capability.ADD_TO_BALANCE,
    ]
    with pytest.raises(ValueError):
        parse_capabilities(["NEW_MEMBER", "ROOT"])


def test_grants_are_scoped_per_organization() -> None:
    st: dict = {}
    dep = deploy(st)
    other = address_from_label("other-guild")

    assert has_capability(st, org=dep.org, principal=dep.onboarding, cap=Capability.NEW_MEMBER)
    assert not has_capability(st, org=other, principal=dep.onboarding, cap=Capability.NEW_MEMBER)
    assert not has_capability(st, org=dep.org, principal=dep.onboarding, cap=Capability.WITHDRAW_NFT)


def test_require_capability_raises_access_denied() -> None:
    st: dict = {}
    dep = deploy(st)
    with pytest.raises(GuildError) as e:
        require_capability(st, org=dep.org, principal=dep.onboarding, cap=Capability.WITHDRAW_NFT)
    assert e.value.code == "access_denied"
    assert e.value.details["capability"] == "WITHDRAW_NFT"


def test_resolve_capability_reports_reason() -> None:
    st: dict = {}
    dep = deploy(st)

    ok, meta = resolve_capability(st, org=dep.org, principal=dep.admin, cap=Capability.COLLECT_NFT)
    assert ok and meta == {}

    ok, meta = resolve_capability(st, org=dep.org, principal=dep.admin, cap=Capability.NEW_MEMBER)
    assert not ok and meta["reason"] == "capability_required"

    ok, meta = resolve_capability(st, org=address_from_label("nobody"), principal=dep.admin, cap=Capability.NEW_MEMBER)
    assert not ok and meta["reason"] == "unknown_organization"


def test_has_and_require_agree_with_resolve() -> None:
    st: dict = {}
    dep = deploy(st)
    nobody = address_from_label("nobody")

    for org, principal, cap in (
        (dep.org, dep.onboarding, Capability.NEW_MEMBER),
        (dep.org, dep.onboarding, Capability.WITHDRAW_NFT),
        (nobody, dep.onboarding, Capability.NEW_MEMBER),
    ):
        ok, meta = resolve_capability(st, org=org, principal=principal, cap=cap)
        assert has_capability(st, org=org, principal=principal, cap=cap) is ok
        if ok:
            require_capability(st, org=org, principal=principal, cap=cap)
            continue
        with pytest.raises(GuildError) as e:
            require_capability(st, org=org, principal=principal, cap=cap)
        assert e.value.code == "access_denied"
        assert e.value.reason == meta["reason"]


def test_grant_and_revoke_round_trip() -> None:
    st: dict = {}
    dep = deploy(st)
    bob = address_from_label("bob-principal")

    out = run(st, system_tx("ACL_GRANT", {"organization": dep.org, "principal": bob, "capabilities": ["WITHDRAW_NFT"]}))
    assert out["capabilities"] == ["WITHDRAW_NFT"]
    assert st["orgs"][dep.org]["acl"][bob] == ["WITHDRAW_NFT"]

    run(st, system_tx("ACL_REVOKE", {"organization": dep.org, "principal": bob, "capabilities": ["WITHDRAW_NFT"]}))
    assert bob not in st["orgs"][dep.org]["acl"]


def test_unknown_capability_in_grant_is_invalid_request() -> None:
    st: dict = {}
    dep = deploy(st)
    with pytest.raises(GuildError) as e:
        run(st, system_tx("ACL_GRANT", {"organization": dep.org, "principal": dep.admin, "capabilities": ["ROOT"]}))
    assert e.value.code == "invalid_request"
    assert e.value.reason == "unknown_capability"


@pytest.mark.parametrize("tx_type", ["ACL_GRANT", "ACL_REVOKE", "ORG_CONFIGURE", "DEPLOYMENT_SET", "NATIVE_MINT"])
def test_registry_and_mint_txs_are_system_only(tx_type: str) -> None:
    st: dict = {}
    deploy(st)
    env = user_tx(st, label="mallory", tx_type=tx_type, payload={})
    with pytest.raises(GuildError) as e:
        run(st, env)
    assert e.value.code == "access_denied"
    assert e.value.reason == "system_tx_required"


def test_deployment_addresses_bind_once() -> None:
    st: dict = {}
    dep = deploy(st)

    # Replaying the same binding is a no-op.
    out = run(st, system_tx("DEPLOYMENT_SET", {"onboarding_address": dep.onboarding}))
    assert out["changed"] == []

    with pytest.raises(GuildError) as e:
        run(st, system_tx("DEPLOYMENT_SET", {"onboarding_address": address_from_label("onboarding-2")}))
    assert e.value.code == "already_initialized"


def test_org_configure_validates_fields() -> None:
    st: dict = {}
    dep = deploy(st)
    bad = {
        "organization": dep.org,
        "kyc_signer": dep.kyc_signer,
        "chunk_size": 0,
        "maximum_chunks": 5,
    }
    with pytest.raises(GuildError) as e:
        run(st, system_tx("ORG_CONFIGURE", bad))
    assert e.value.reason == "chunk_size_must_be_positive"
