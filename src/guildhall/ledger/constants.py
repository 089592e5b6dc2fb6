# src/guildhall/ledger/constants.py
from __future__ import annotations

"""Reserved addresses and token ids shared by the bank, onboarding and custody.

Addresses are 20-byte identities rendered as lowercase 0x-prefixed hex.
"""

ADDRESS_BYTES: int = 20

# Null owner / "no address".
ZERO_ADDRESS: str = "0x" + "00" * ADDRESS_BYTES

# Pooled organization ownership (assets held on behalf of everyone).
GUILD: str = "0x000000000000000000000000000000000000dead"

# Bank bookkeeping account that tracks totals per token.
TOTAL: str = "0x000000000000000000000000000000000000babe"

# Internal token id for membership units.
UNITS: str = "0x00000000000000000000000000000000000ff1ce"

# Native currency is addressed as the zero address in token positions.
ETH_TOKEN: str = ZERO_ADDRESS

# Coupon kind for KYC onboarding coupons.
COUPON_KIND_KYC: str = "coupon-kyc"

# System sender used for deployment / genesis transactions.
SYSTEM_SENDER: str = "SYSTEM"

# Coupon nonces are unsigned 64-bit counters.
MAX_COUPON_NONCE: int = 2**64 - 1

# Chain id used when no node config names one.
DEFAULT_CHAIN_ID: int = 1337
