from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from guildhall.api.routes_public_parts.common import _address_param, _executor, _snapshot
from guildhall.api.schemas import CouponHashRequest
from guildhall.ledger.constants import UNITS
from guildhall.runtime.apply.onboarding import coupon_hash

router = APIRouter()

Json = Dict[str, Any]


@router.get("/onboarding/nonces/{member}")
def onboarding_nonce(request: Request, member: str) -> Json:
    """Last redeemed coupon nonce; the next coupon must carry nonce + 1."""
    m = _address_param(member, "member")
    nonce = _executor(request).view().member_nonce(m)
    return {"ok": True, "member": m, "nonce": nonce, "next_nonce": nonce + 1}


@router.post("/onboarding/coupon-hash")
def onboarding_coupon_hash(request: Request, body: CouponHashRequest) -> Json:
    """Digest the KYC signer must sign for (organization, member, nonce)."""
    org = _address_param(body.organization, "organization")
    member = _address_param(body.member, "member")
    digest = coupon_hash(_snapshot(request), organization=org, member=member, nonce=body.nonce)
    return {"ok": True, "organization": org, "member": member, "nonce": body.nonce, "digest": "0x" + digest.hex()}


@router.get("/orgs/{org}/members/{member}")
def org_member(request: Request, org: str, member: str) -> Json:
    o = _address_param(org, "organization")
    m = _address_param(member, "member")
    view = _executor(request).view()
    return {
        "ok": True,
        "organization": o,
        "member": m,
        "active": view.is_member(o, m),
        "units": view.balance_of(o, m, UNITS),
        "nonce": view.member_nonce(m),
    }
