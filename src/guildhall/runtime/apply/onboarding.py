# src/guildhall/runtime/apply/onboarding.py
from __future__ import annotations

"""KYC coupon onboarding.

A member joins (or tops up) by presenting a coupon signed by the organization's
KYC signer together with a fund contribution. The contribution is cut into
whole chunks of `chunk_size`; each chunk buys `units_per_chunk` units, the
chunks are retained by the treasury and the remainder is refunded to the
sender.

State owned here:

  state["onboarding"] = {"address": <onboarding contract address>,
                         "nonces":  {member: last redeemed coupon nonce}}

Two entry points share one transition:

  ONBOARD      {organization, member, token, amount, nonce, signature}
               pulls `amount` of `token` from the sender (prior allowance to
               the onboarding address).
  ONBOARD_ETH  {organization, member, nonce, signature} + attached value
               the value is wrapped into the wrapped-native token before
               retention; refunds are paid in native currency.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from guildhall.crypto.coupon import Coupon, hash_coupon_message, recover_signer
from guildhall.ledger.constants import ETH_TOKEN, GUILD, MAX_COUPON_NONCE, UNITS, ZERO_ADDRESS
from guildhall.runtime.apply.assets import (
    native_move,
    payload_address,
    payload_amount,
    token_transfer,
    token_transfer_from,
    wrap_native,
)
from guildhall.runtime.apply.bank import activate_member, add_to_balance, balance_of, is_member
from guildhall.runtime.errors import (
    AlreadyMember,
    BelowMinimum,
    InvalidRequest,
    LimitExceeded,
    NonceReplayed,
    NotFound,
    SignatureInvalid,
)
from guildhall.runtime.gates import Capability, require_capability
from guildhall.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int, float)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _ensure_onboarding_root(state: Json) -> Json:
    root = state.get("onboarding")
    if not isinstance(root, dict):
        root = {}
        state["onboarding"] = root
    root.setdefault("nonces", {})
    return root


def onboarding_address(state: Json) -> str:
    addr = _as_str(_as_dict(state.get("onboarding")).get("address")).lower()
    if not addr or addr == ZERO_ADDRESS:
        raise NotFound("onboarding_not_deployed", {})
    return addr


def member_nonce(state: Json, member: str) -> int:
    nonces = _as_dict(_as_dict(state.get("onboarding")).get("nonces"))
    return int(nonces.get(member, 0) or 0)


def coupon_hash(state: Json, *, organization: str, member: str, nonce: int) -> bytes:
    """Coupon digest bound to this ledger's onboarding address and chain."""
    return hash_coupon_message(
        organization=organization,
        verifying_contract=onboarding_address(state),
        chain_id=int(state.get("chain_id", 0) or 0),
        coupon=Coupon(member=member, nonce=int(nonce)),
    )


@dataclass(frozen=True)
class FundSplit:
    chunks: int
    units: int
    retained: int
    refunded: int


def split_contribution(amount: int, *, chunk_size: int, units_per_chunk: int) -> FundSplit:
    """Integer split of a contribution; retained + refunded == amount always."""
    amt = int(amount)
    chunks = amt // int(chunk_size)
    retained = chunks * int(chunk_size)
    return FundSplit(
        chunks=chunks,
        units=chunks * int(units_per_chunk),
        retained=retained,
        refunded=amt - retained,
    )


def _org_config(state: Json, org: str) -> Json:
    orgs = _as_dict(state.get("orgs"))
    cfg = _as_dict(_as_dict(orgs.get(org)).get("config"))
    if not _as_str(cfg.get("kyc_signer")):
        raise NotFound("organization_not_configured", {"organization": org})
    return cfg


def _onboard(
    state: Json,
    env: TxEnvelope,
    *,
    org: str,
    cfg: Json,
    member: str,
    nonce: int,
    signature: Any,
    amount: int,
    native: bool,
    token: str,
) -> Json:
    contract = onboarding_address(state)

    digest = coupon_hash(state, organization=org, member=member, nonce=nonce)
    signer = recover_signer(digest, signature)
    if signer != _as_str(cfg.get("kyc_signer")).lower():
        raise SignatureInvalid("invalid_sig", {"member": member, "nonce": nonce})

    current = member_nonce(state, member)
    if nonce != current + 1:
        raise NonceReplayed("already_redeemed", {"member": member, "nonce": nonce, "current": current})

    if is_member(state, org, member) and not bool(cfg.get("can_top_up", False)):
        raise AlreadyMember("already_member", {"organization": org, "member": member})

    chunk_size = int(cfg.get("chunk_size") or 0)
    units_per_chunk = int(cfg.get("units_per_chunk") or 1)
    split = split_contribution(amount, chunk_size=chunk_size, units_per_chunk=units_per_chunk)
    if split.chunks == 0:
        raise BelowMinimum("not_sufficient_funds", {"amount": amount, "chunk_size": chunk_size})

    existing = balance_of(state, org, member, UNITS)
    maximum_chunks = int(cfg.get("maximum_chunks") or 0)
    if (existing + split.units) // units_per_chunk > maximum_chunks:
        raise LimitExceeded(
            "too_much_funds",
            {"existing_units": existing, "units": split.units, "maximum_chunks": maximum_chunks},
        )

    require_capability(state, org=org, principal=contract, cap=Capability.ADD_TO_BALANCE)
    require_capability(state, org=org, principal=contract, cap=Capability.NEW_MEMBER)

    # Funds sit at the onboarding address from here on.
    if native:
        treasury_token = wrap_native(state, contract, split.retained)
        if split.refunded:
            native_move(state, contract, env.sender, split.refunded)
    else:
        token_transfer_from(state, token, contract, env.sender, contract, amount)
        treasury_token = token
        if split.refunded:
            token_transfer(state, token, contract, env.sender, split.refunded)

    fund_target = _as_str(cfg.get("fund_target")).lower() or ZERO_ADDRESS
    if fund_target != ZERO_ADDRESS:
        token_transfer(state, treasury_token, contract, fund_target, split.retained)
        retained_to = fund_target
    else:
        token_transfer(state, treasury_token, contract, org, split.retained)
        add_to_balance(state, org, GUILD, treasury_token, split.retained)
        retained_to = GUILD

    add_to_balance(state, org, member, UNITS, split.units)
    newly_active = activate_member(state, org, member)

    _ensure_onboarding_root(state)["nonces"][member] = nonce

    return {
        "organization": org,
        "member": member,
        "nonce": nonce,
        "token": treasury_token,
        "chunks": split.chunks,
        "units": split.units,
        "retained": split.retained,
        "refunded": split.refunded,
        "retained_to": retained_to,
        "new_member": newly_active,
    }


def _common_args(payload: Json) -> tuple[str, str, int, Any]:
    org = payload_address(payload, "organization")
    member = payload_address(payload, "member")
    nonce = payload_amount(payload, "nonce")
    if nonce > MAX_COUPON_NONCE:
        raise InvalidRequest("nonce_out_of_range", {"nonce": nonce, "max": MAX_COUPON_NONCE})
    # Malformed or missing signatures surface as SignatureInvalid from recovery.
    return org, member, nonce, payload.get("signature")


def _apply_onboard(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    org, member, nonce, signature = _common_args(payload)
    cfg = _org_config(state, org)

    configured = _as_str(cfg.get("token")).lower() or ETH_TOKEN
    if configured == ETH_TOKEN:
        raise InvalidRequest("native_onboarding_requires_onboard_eth", {"organization": org})
    token = payload_address(payload, "token")
    if token != configured:
        raise InvalidRequest("token_mismatch", {"token": token, "configured": configured})
    amount = payload_amount(payload)

    out = _onboard(
        state,
        env,
        org=org,
        cfg=cfg,
        member=member,
        nonce=nonce,
        signature=signature,
        amount=amount,
        native=False,
        token=token,
    )
    return {"applied": "ONBOARD", **out}


def _apply_onboard_eth(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    org, member, nonce, signature = _common_args(payload)
    cfg = _org_config(state, org)

    configured = _as_str(cfg.get("token")).lower() or ETH_TOKEN
    if configured != ETH_TOKEN:
        raise InvalidRequest("not_native_onboarding", {"organization": org, "configured": configured})

    # Attached value arrives with the call, before any check runs.
    amount = int(env.value)
    if amount > 0:
        native_move(state, env.sender, onboarding_address(state), amount)

    out = _onboard(
        state,
        env,
        org=org,
        cfg=cfg,
        member=member,
        nonce=nonce,
        signature=signature,
        amount=amount,
        native=True,
        token=ETH_TOKEN,
    )
    return {"applied": "ONBOARD_ETH", **out}


ONBOARDING_TX_TYPES: Set[str] = {"ONBOARD", "ONBOARD_ETH"}


def apply_onboarding(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in ONBOARDING_TX_TYPES:
        return None

    if t == "ONBOARD":
        return _apply_onboard(state, env)
    if t == "ONBOARD_ETH":
        return _apply_onboard_eth(state, env)

    return None


__all__ = [
    "ONBOARDING_TX_TYPES",
    "FundSplit",
    "apply_onboarding",
    "coupon_hash",
    "member_nonce",
    "onboarding_address",
    "split_contribution",
]
