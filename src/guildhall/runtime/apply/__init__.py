# src/guildhall/runtime/apply/__init__.py
"""Domain-specific apply modules.

These modules implement deterministic ledger state transitions for subsets
of tx types. runtime/domain_dispatch.py routes envelopes to them.

NOTE: Keep this package import-safe (no imports of domain_dispatch here).
"""

from __future__ import annotations

__all__ = [
    "assets",
    "bank",
    "custody",
    "onboarding",
    "registry",
]
