from __future__ import annotations

"""Pydantic request schemas for the public API.

These exist only for HTTP input validation; the ledger re-validates every
field that affects state.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field

from guildhall.ledger.constants import MAX_COUPON_NONCE


class TxSubmit(BaseModel):
    tx_type: str = Field(..., description="Transaction type, e.g. ONBOARD_ETH")
    sender: str = Field(..., description="0x-prefixed sender address")
    nonce: int = Field(..., ge=0, description="Sender account nonce + 1")
    payload: Dict[str, Any] = Field(default_factory=dict)
    value: int = Field(default=0, ge=0, description="Attached native value")
    sig: str = Field(default="", description="0x-prefixed 65-byte recoverable signature")
    system: bool = Field(default=False)

    model_config = {"extra": "ignore"}


class CouponHashRequest(BaseModel):
    organization: str = Field(..., description="Organization address")
    member: str = Field(..., description="Member address")
    nonce: int = Field(..., ge=0, le=MAX_COUPON_NONCE, description="Coupon nonce")
