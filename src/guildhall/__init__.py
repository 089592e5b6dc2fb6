# src/guildhall/__init__.py
"""guildhall: coupon onboarding ledger and NFT custody registry."""

from __future__ import annotations

__version__ = "0.1.0"
