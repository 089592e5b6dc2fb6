from __future__ import annotations

import pytest

from guildhall.crypto.coupon import (
    Coupon,
    hash_coupon_message,
    recover_signer,
    sign_coupon,
    sign_digest,
)
from guildhall.runtime.errors import SignatureInvalid
from guildhall.testing.sigtools import deterministic_keypair
from guildhall.util.address import address_from_label

_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ORG = address_from_label("org-a")
OTHER_ORG = address_from_label("org-b")
CONTRACT = address_from_label("onboarding")
MEMBER = address_from_label("member")


def _digest(**over):
    args = {
        "organization": ORG,
        "verifying_contract": CONTRACT,
        "chain_id": 1337,
        "coupon": Coupon(member=MEMBER, nonce=1),
    }
    args.update(over)
    return hash_coupon_message(**args)


def test_coupon_digest_is_deterministic_and_32_bytes() -> None:
    d1 = _digest()
    d2 = _digest()
    assert d1 == d2
    assert len(d1) == 32


def test_every_bound_field_changes_the_digest() -> None:
    base = _digest()
    variants = [
        _digest(organization=OTHER_ORG),
        _digest(verifying_contract=address_from_label("onboarding-2")),
        _digest(chain_id=1338),
        _digest(coupon=Coupon(member=address_from_label("someone-else"), nonce=1)),
        _digest(coupon=Coupon(member=MEMBER, nonce=2)),
        _digest(coupon=Coupon(member=MEMBER, nonce=1, kind="coupon-other")),
    ]
    assert all(v != base for v in variants)
    assert len(set(variants)) == len(variants)


def test_member_address_case_does_not_change_digest() -> None:
    upper = "0x" + MEMBER[2:].upper()
    assert _digest(coupon=Coupon(member=upper, nonce=1)) == _digest()


def test_sign_and_recover_round_trip() -> None:
    addr, priv = deterministic_keypair(label="kyc")
    sig = sign_coupon(
        privkey=priv,
        organization=ORG,
        verifying_contract=CONTRACT,
        chain_id=1337,
        coupon=Coupon(member=MEMBER, nonce=1),
    )
    assert sig.startswith("0x") and len(sig) == 2 + 130
    assert recover_signer(_digest(), sig) == addr


def test_signature_for_other_org_recovers_a_different_signer() -> None:
    addr, priv = deterministic_keypair(label="kyc")
    sig = sign_coupon(
        privkey=priv,
        organization=OTHER_ORG,
        verifying_contract=CONTRACT,
        chain_id=1337,
        coupon=Coupon(member=MEMBER, nonce=1),
    )
    assert recover_signer(_digest(), sig) != addr


def test_recovery_id_zero_one_form_is_accepted() -> None:
    addr, priv = deterministic_keypair(label="kyc")
    d = _digest()
    raw = bytes.fromhex(sign_digest(digest=d, privkey=priv)[2:])
    v01 = raw[:64] + bytes([raw[64] - 27])
    assert recover_signer(d, v01) == addr


@pytest.mark.parametrize(
    "sig,reason",
    [
        ("0x1234", "bad_signature_length"),
        ("0x" + "zz" * 65, "malformed_signature"),
        (None, "malformed_signature"),
    ],
)
def test_malformed_signatures_are_rejected(sig, reason) -> None:
    with pytest.raises(SignatureInvalid) as e:
        recover_signer(_digest(), sig)
    assert e.value.code == "signature_invalid"
    assert e.value.reason == reason


def test_bad_recovery_id_is_rejected() -> None:
    _, priv = deterministic_keypair(label="kyc")
    d = _digest()
    raw = bytes.fromhex(sign_digest(digest=d, privkey=priv)[2:])
    with pytest.raises(SignatureInvalid) as e:
        recover_signer(d, raw[:64] + bytes([29]))
    assert e.value.reason == "bad_recovery_id"


def test_high_s_duplicate_is_rejected() -> None:
    _, priv = deterministic_keypair(label="kyc")
    d = _digest()
    raw = bytes.fromhex(sign_digest(digest=d, privkey=priv)[2:])
    s = int.from_bytes(raw[32:64], "big")
    flipped = raw[:32] + (_N - s).to_bytes(32, "big") + bytes([55 - raw[64]])
    with pytest.raises(SignatureInvalid) as e:
        recover_signer(d, flipped)
    assert e.value.reason == "malleable_signature"
