# src/guildhall/runtime/state_invariants.py
from __future__ import annotations

"""Shape checks run on ledger state before every apply.

Only `accounts` and `params` are created here; each domain container is
created lazily by the apply module that owns it, and here we only insist it
is a dict once present.
"""

from collections.abc import MutableMapping
from typing import Any, Dict

Json = Dict[str, Any]

_CORE = ("accounts", "params")
_DOMAIN = ("orgs", "onboarding", "custody", "native", "tokens", "nfts")
_COUNTERS = ("chain_id", "tx_count")


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def ensure_state(st: Any) -> Json:
    """Return `st` with the core containers present. Raises TypeError on a malformed ledger."""
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be a mapping, got {type(st).__name__}")

    for key in _CORE:
        st.setdefault(key, {})
    for key in _CORE + _DOMAIN:
        if key in st and not isinstance(st[key], dict):
            raise TypeError(f"state[{key!r}] must be a dict, got {type(st[key]).__name__}")
    for key in _COUNTERS:
        if st.get(key) is not None and not _is_int(st[key]):
            raise TypeError(f"state[{key!r}] must be an int, got {type(st[key]).__name__}")
    return st  # type: ignore[return-value]


__all__ = ["ensure_state"]
