from __future__ import annotations

import copy

import pytest

from guildhall.ledger.constants import GUILD, ZERO_ADDRESS
from guildhall.runtime.apply import custody
from guildhall.runtime.apply.assets import nft_owner_of
from guildhall.runtime.errors import GuildError
from guildhall.testing.deployment import deploy, fund_native, run, run_user, system_tx, user_tx
from guildhall.testing.sigtools import address_of
from guildhall.util.address import address_from_label

PUNKS = address_from_label("collection-punks")
APES = address_from_label("collection-apes")


def _mint(st, collection: str, token_id: int, to: str, *, safe: bool = True, data=None):
    payload = {"collection": collection, "token_id": token_id, "to": to, "safe": safe}
    if data is not None:
        payload["data"] = data
    return run(st, system_tx("NFT_MINT", payload))


def _fails(st, env, code: str, reason: str | None = None) -> GuildError:
    before = copy.deepcopy(st)
    with pytest.raises(GuildError) as e:
        run(st, env)
    assert e.value.code == code
    if reason is not None:
        assert e.value.reason == reason
    assert st == before
    return e.value


def _admin(st, dep, tx_type: str, payload: dict):
    return run_user(st, label=dep.admin_label, tx_type=tx_type, payload=payload)


# ---------------------------------------------------------------------------
# Push path
# ---------------------------------------------------------------------------


def test_safe_mint_to_registry_registers_asset_for_guild() -> None:
    st: dict = {}
    dep = deploy(st)

    out = _mint(st, PUNKS, 7, dep.custody)

    assert out["custody"]["registered"] is True
    assert custody.collection_count(st) == 1
    assert custody.collection_at(st, 0) == PUNKS
    assert custody.token_count(st, PUNKS) == 1
    assert custody.token_at(st, PUNKS, 0) == 7
    assert custody.owner_of(st, PUNKS, 7) == GUILD
    assert nft_owner_of(st, PUNKS, 7) == dep.custody


def test_safe_transfer_into_registry_registers_asset() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, PUNKS, 1, alice)

    out = run_user(
        st,
        label="alice",
        tx_type="NFT_SAFE_TRANSFER_FROM",
        payload={"collection": PUNKS, "token_id": 1, "from": alice, "to": dep.custody, "data": dep.org},
    )

    assert out["custody"]["registered"] is True
    assert out["custody"]["from"] == alice
    assert custody.owner_of(st, PUNKS, 1) == GUILD


def test_safe_transfer_naming_another_organization_aborts() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, PUNKS, 1, alice)

    env = user_tx(
        st,
        label="alice",
        tx_type="NFT_SAFE_TRANSFER_FROM",
        payload={
            "collection": PUNKS,
            "token_id": 1,
            "from": alice,
            "to": dep.custody,
            "data": {"organization": address_from_label("other-guild")},
        },
    )
    _fails(st, env, "reconciliation_not_allowed", "update_not_allowed")
    assert nft_owner_of(st, PUNKS, 1) == alice


def test_safe_mint_with_abi_encoded_organization_word_registers() -> None:
    st: dict = {}
    dep = deploy(st)
    word = "0x" + "00" * 12 + dep.org[2:]

    out = _mint(st, PUNKS, 3, dep.custody, data=word)

    assert out["custody"]["registered"] is True
    assert custody.owner_of(st, PUNKS, 3) == GUILD


@pytest.mark.parametrize("data", ["0x1234", "0x" + "ab" * 40, "not-hex", b"\x01\x02", {"note": "gift"}])
def test_safe_mint_with_arbitrary_data_still_registers(data) -> None:
    st: dict = {}
    dep = deploy(st)

    out = _mint(st, PUNKS, 4, dep.custody, data=data)

    assert out["custody"]["registered"] is True
    assert custody.token_count(st, PUNKS) == 1
    assert nft_owner_of(st, PUNKS, 4) == dep.custody


def test_abi_word_naming_another_organization_aborts() -> None:
    st: dict = {}
    dep = deploy(st)
    other = address_from_label("other-guild")
    env = system_tx(
        "NFT_MINT",
        {"collection": PUNKS, "token_id": 5, "to": dep.custody, "data": "0x" + "00" * 12 + other[2:]},
    )
    _fails(st, env, "reconciliation_not_allowed", "update_not_allowed")


def test_push_into_uninitialized_registry_is_not_found() -> None:
    st: dict = {}
    dep = deploy(st, with_custody=False)
    _fails(
        st,
        system_tx("NFT_MINT", {"collection": PUNKS, "token_id": 1, "to": dep.custody}),
        "not_found",
        "custody_not_initialized",
    )


# ---------------------------------------------------------------------------
# Pull path
# ---------------------------------------------------------------------------


def test_plain_transfer_is_reconciled_by_update_collection() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, PUNKS, 3, alice)

    run_user(
        st,
        label="alice",
        tx_type="NFT_TRANSFER_FROM",
        payload={"collection": PUNKS, "token_id": 3, "from": alice, "to": dep.custody},
    )
    assert custody.owner_of(st, PUNKS, 3) == ZERO_ADDRESS

    # Anyone may reconcile.
    out = run_user(st, label="bob", tx_type="CUSTODY_UPDATE_COLLECTION", payload={"collection": PUNKS, "token_id": 3})
    assert out["registered"] is True
    assert custody.owner_of(st, PUNKS, 3) == GUILD

    again = run_user(st, label="bob", tx_type="CUSTODY_UPDATE_COLLECTION", payload={"collection": PUNKS, "token_id": 3})
    assert again["registered"] is False
    assert custody.token_count(st, PUNKS) == 1


def test_update_collection_requires_registry_to_hold_the_token() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, PUNKS, 3, alice)
    env = user_tx(st, label="bob", tx_type="CUSTODY_UPDATE_COLLECTION", payload={"collection": PUNKS, "token_id": 3})
    _fails(st, env, "reconciliation_not_allowed")


def test_collect_pulls_an_approved_token() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, APES, 9, alice)
    run_user(st, label="alice", tx_type="NFT_APPROVE", payload={"collection": APES, "token_id": 9, "operator": dep.custody})

    out = _admin(st, dep, "CUSTODY_COLLECT", {"organization": dep.org, "collection": APES, "token_id": 9})

    assert out["pulled"] is True
    assert out["registered"] is True
    assert nft_owner_of(st, APES, 9) == dep.custody
    assert custody.owner_of(st, APES, 9) == GUILD


def test_collect_without_approval_is_refused() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, APES, 9, alice)
    env = user_tx(
        st,
        label=dep.admin_label,
        tx_type="CUSTODY_COLLECT",
        payload={"organization": dep.org, "collection": APES, "token_id": 9},
    )
    _fails(st, env, "reconciliation_not_allowed", "registry_not_approved")


def test_collect_requires_capability() -> None:
    st: dict = {}
    dep = deploy(st)
    _mint(st, APES, 9, dep.custody, safe=False)
    env = user_tx(
        st,
        label="mallory",
        tx_type="CUSTODY_COLLECT",
        payload={"organization": dep.org, "collection": APES, "token_id": 9},
    )
    _fails(st, env, "access_denied", "capability_required")


def test_gated_calls_for_another_organization_are_denied() -> None:
    st: dict = {}
    dep = deploy(st)
    _mint(st, APES, 9, dep.custody)
    env = user_tx(
        st,
        label=dep.admin_label,
        tx_type="CUSTODY_COLLECT",
        payload={"organization": address_from_label("other-guild"), "collection": APES, "token_id": 9},
    )
    _fails(st, env, "access_denied", "wrong_organization")


# ---------------------------------------------------------------------------
# Internal transfer and withdraw
# ---------------------------------------------------------------------------


def test_internal_transfer_then_owner_withdraws_to_self() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, PUNKS, 1, dep.custody)

    _admin(
        st,
        dep,
        "CUSTODY_INTERNAL_TRANSFER",
        {"organization": dep.org, "new_owner": alice, "collection": PUNKS, "token_id": 1},
    )
    assert custody.owner_of(st, PUNKS, 1) == alice

    out = run_user(
        st,
        label="alice",
        tx_type="CUSTODY_WITHDRAW",
        payload={"organization": dep.org, "recipient": alice, "collection": PUNKS, "token_id": 1},
    )
    assert out["previous_owner"] == alice
    assert nft_owner_of(st, PUNKS, 1) == alice
    assert custody.owner_of(st, PUNKS, 1) == ZERO_ADDRESS
    assert custody.collection_count(st) == 0


def test_withdraw_of_member_owned_asset_must_go_to_owner() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    _mint(st, PUNKS, 1, dep.custody)
    _admin(
        st,
        dep,
        "CUSTODY_INTERNAL_TRANSFER",
        {"organization": dep.org, "new_owner": alice, "collection": PUNKS, "token_id": 1},
    )
    env = user_tx(
        st,
        label=dep.admin_label,
        tx_type="CUSTODY_WITHDRAW",
        payload={"organization": dep.org, "recipient": address_of("bob"), "collection": PUNKS, "token_id": 1},
    )
    _fails(st, env, "access_denied", "recipient_not_owner")


def test_admin_withdraws_guild_asset_to_any_recipient() -> None:
    st: dict = {}
    dep = deploy(st)
    bob = address_of("bob")
    _mint(st, PUNKS, 1, dep.custody)

    _admin(st, dep, "CUSTODY_WITHDRAW", {"organization": dep.org, "recipient": bob, "collection": PUNKS, "token_id": 1})
    assert nft_owner_of(st, PUNKS, 1) == bob


def test_withdraw_by_stranger_is_denied_before_existence_check() -> None:
    st: dict = {}
    dep = deploy(st)
    env = user_tx(
        st,
        label="mallory",
        tx_type="CUSTODY_WITHDRAW",
        payload={"organization": dep.org, "recipient": address_of("mallory"), "collection": PUNKS, "token_id": 404},
    )
    _fails(st, env, "access_denied")


def test_withdraw_of_unregistered_asset_is_not_found() -> None:
    st: dict = {}
    dep = deploy(st)
    env = user_tx(
        st,
        label=dep.admin_label,
        tx_type="CUSTODY_WITHDRAW",
        payload={"organization": dep.org, "recipient": dep.admin, "collection": PUNKS, "token_id": 404},
    )
    _fails(st, env, "not_found", "asset_not_registered")


def test_internal_transfer_of_unregistered_asset_is_not_found() -> None:
    st: dict = {}
    dep = deploy(st)
    env = user_tx(
        st,
        label=dep.admin_label,
        tx_type="CUSTODY_INTERNAL_TRANSFER",
        payload={"organization": dep.org, "new_owner": address_of("alice"), "collection": PUNKS, "token_id": 5},
    )
    _fails(st, env, "not_found")


def test_withdraw_compacts_indexes_with_swap_and_pop() -> None:
    st: dict = {}
    dep = deploy(st)
    for tid in (1, 2, 3):
        _mint(st, PUNKS, tid, dep.custody)
    _mint(st, APES, 10, dep.custody)
    assert custody.collection_count(st) == 2

    _admin(st, dep, "CUSTODY_WITHDRAW", {"organization": dep.org, "recipient": dep.admin, "collection": PUNKS, "token_id": 1})
    assert [custody.token_at(st, PUNKS, i) for i in range(custody.token_count(st, PUNKS))] == [3, 2]

    # Removing the last token of the first collection moves the last collection into its slot.
    for tid in (3, 2):
        _admin(
            st,
            dep,
            "CUSTODY_WITHDRAW",
            {"organization": dep.org, "recipient": dep.admin, "collection": PUNKS, "token_id": tid},
        )
    assert custody.collection_count(st) == 1
    assert custody.collection_at(st, 0) == APES
    assert custody.token_count(st, PUNKS) == 0

    with pytest.raises(GuildError) as e:
        custody.collection_at(st, 1)
    assert e.value.code == "not_found"


def test_register_then_withdraw_round_trip_restores_indexes() -> None:
    st: dict = {}
    dep = deploy(st)
    _mint(st, PUNKS, 1, dep.custody)
    _admin(st, dep, "CUSTODY_WITHDRAW", {"organization": dep.org, "recipient": dep.admin, "collection": PUNKS, "token_id": 1})
    assert st["custody"]["collections"] == []
    assert st["custody"]["tokens"] == {}
    assert st["custody"]["owners"] == {}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_second_initialize_fails() -> None:
    st: dict = {}
    dep = deploy(st)
    env = system_tx("CUSTODY_INITIALIZE", {"organization": address_from_label("other-guild"), "admin": dep.admin})
    _fails(st, env, "already_initialized")
    assert st["custody"]["organization"] == dep.org


def test_direct_value_to_registry_is_rejected() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    fund_native(st, alice, 100)
    env = user_tx(st, label="alice", tx_type="NATIVE_TRANSFER", payload={"to": dep.custody}, value=10)
    _fails(st, env, "unsupported_direct_value")


def test_value_attached_to_custody_call_is_rejected() -> None:
    st: dict = {}
    dep = deploy(st)
    alice = address_of("alice")
    fund_native(st, alice, 100)
    env = user_tx(
        st,
        label="alice",
        tx_type="CUSTODY_UPDATE_COLLECTION",
        payload={"collection": PUNKS, "token_id": 1},
        value=10,
    )
    _fails(st, env, "unsupported_direct_value")


def test_withdraw_to_the_registry_itself_is_rejected() -> None:
    st: dict = {}
    dep = deploy(st)
    _mint(st, PUNKS, 1, dep.custody)
    env = user_tx(
        st,
        label=dep.admin_label,
        tx_type="CUSTODY_WITHDRAW",
        payload={"organization": dep.org, "recipient": dep.custody, "collection": PUNKS, "token_id": 1},
    )
    _fails(st, env, "invalid_request", "recipient_is_registry")
    assert custody.owner_of(st, PUNKS, 1) == GUILD
