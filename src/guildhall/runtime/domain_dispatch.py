# src/guildhall/runtime/domain_dispatch.py

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Dict, FrozenSet, Optional

from guildhall.ledger.constants import SYSTEM_SENDER
from guildhall.runtime.errors import GuildError, InvalidRequest, UnsupportedDirectValue
from guildhall.runtime.state_invariants import ensure_state
from guildhall.runtime.tx_admission_types import TxEnvelope
from guildhall.util.address import normalize_address

# Domain appliers (each returns Optional[Json]; returning None means "not claimed")
from guildhall.runtime.apply.assets import ASSET_TX_TYPES, apply_assets
from guildhall.runtime.apply.custody import CUSTODY_TX_TYPES, apply_custody
from guildhall.runtime.apply.onboarding import ONBOARDING_TX_TYPES, apply_onboarding
from guildhall.runtime.apply.registry import REGISTRY_TX_TYPES, apply_registry

Json = Dict[str, Any]
ApplyFn = Callable[[Json, TxEnvelope], Optional[Json]]


# Only these tx types may carry attached native value.
PAYABLE_TX_TYPES: FrozenSet[str] = frozenset({"NATIVE_TRANSFER", "TOKEN_WRAP", "ONBOARD_ETH"})


def _normalize_envelope(env: Any) -> TxEnvelope:
    """Coerce dict envelopes and canonicalize the sender.

    Tests and tools pass raw dict envelopes; appliers rely on attribute
    access and on `sender` being a lowercase address (or SYSTEM).
    """
    e = TxEnvelope.from_json(env)
    t = e.tx_type.strip().upper()
    if not t:
        raise InvalidRequest("missing_tx_type", {"tx_type": t})

    if e.system:
        if e.sender != SYSTEM_SENDER:
            raise InvalidRequest("system_sender_required", {"tx_type": t, "sender": e.sender})
        return dataclasses.replace(e, tx_type=t)

    try:
        sender = normalize_address(e.sender)
    except ValueError:
        raise InvalidRequest("invalid_sender", {"tx_type": t, "sender": e.sender}) from None
    return dataclasses.replace(e, tx_type=t, sender=sender)


def account_nonce(state: Json, sender: str) -> int:
    acct = state.get("accounts", {}).get(sender)
    if not isinstance(acct, dict):
        return 0
    try:
        return int(acct.get("nonce", 0) or 0)
    except Exception:
        return 0


def _check_envelope(state: Json, env: TxEnvelope) -> None:
    if env.value < 0:
        raise InvalidRequest("negative_value", {"value": env.value})
    if env.value > 0 and env.tx_type not in PAYABLE_TX_TYPES:
        raise UnsupportedDirectValue("value_not_accepted", {"tx_type": env.tx_type, "value": env.value})

    if env.system:
        return
    expected = account_nonce(state, env.sender) + 1
    if int(env.nonce) != expected:
        raise InvalidRequest("bad_nonce", {"sender": env.sender, "nonce": env.nonce, "expected": expected})


def _consume_nonce(state: Json, env: TxEnvelope) -> None:
    if env.system:
        return
    acct = state["accounts"].setdefault(env.sender, {})
    acct["nonce"] = int(env.nonce)


_APPLIERS: tuple[ApplyFn, ...] = (
    apply_registry,
    apply_assets,
    apply_onboarding,
    apply_custody,
)


def apply_tx(state: Json, env: Any) -> Json:
    """Dispatch a TxEnvelope to the first domain applier that claims it.

    Mutates `state` in place; use apply_tx_atomic() for rollback on failure.
    """

    ensure_state(state)
    env_norm = _normalize_envelope(env)
    t = env_norm.tx_type

    _check_envelope(state, env_norm)

    for fn in _APPLIERS:
        try:
            out = fn(state, env_norm)
        except GuildError:
            raise
        except Exception as e:
            raise GuildError(
                "domain_error",
                type(e).__name__,
                {"tx_type": t, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            _consume_nonce(state, env_norm)
            return out

    raise InvalidRequest("tx_type_not_implemented", {"tx_type": t})


def supported_tx_types() -> FrozenSet[str]:
    return frozenset(ASSET_TX_TYPES | CUSTODY_TX_TYPES | ONBOARDING_TX_TYPES | REGISTRY_TX_TYPES)


__all__ = ["PAYABLE_TX_TYPES", "account_nonce", "apply_tx", "supported_tx_types"]
