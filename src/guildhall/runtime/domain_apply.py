from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List

from guildhall.runtime.domain_dispatch import apply_tx
from guildhall.runtime.errors import GuildError

Json = Dict[str, Any]


def _swap_in(state: Json, working: Json) -> None:
    # In place, so callers holding a reference to `state` see the commit.
    state.clear()
    state.update(working)


def apply_tx_atomic(state: Json, env: Any) -> Json:
    """Apply one envelope all-or-nothing.

    The applier runs against a deep copy. On GuildError the copy is dropped,
    so value already moved, NFTs already transferred and the consumed account
    nonce all disappear with it and `state` is untouched.
    """
    working = copy.deepcopy(state)
    meta = apply_tx(working, env)
    _swap_in(state, working)
    return meta


def apply_txs_atomic(state: Json, envs: Iterable[Any]) -> List[Json]:
    """Apply a sequence of envelopes as one unit; the first failure discards all of them."""
    working = copy.deepcopy(state)
    out = [apply_tx(working, env) for env in envs]
    _swap_in(state, working)
    return out


__all__ = ["GuildError", "apply_tx", "apply_tx_atomic", "apply_txs_atomic", "Json"]
