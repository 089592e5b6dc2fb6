# src/guildhall/runtime/apply/registry.py
from __future__ import annotations

"""Deployment-time registry transactions (system only).

  DEPLOYMENT_SET   bind the onboarding / custody contract addresses and the
                   wrapped-native token. Re-binding to a different address
                   fails AlreadyInitialized; re-applying the same values is a
                   no-op so boot can replay the deployment file.
  ORG_CONFIGURE    set an organization's onboarding configuration.
  ACL_GRANT        add capabilities for a principal in an organization.
  ACL_REVOKE       remove them.
"""

from typing import Any, Dict, List, Optional, Set

from guildhall.ledger.constants import ETH_TOKEN, SYSTEM_SENDER, ZERO_ADDRESS
from guildhall.runtime.apply.assets import payload_address, payload_amount
from guildhall.runtime.apply.bank import ensure_org_root
from guildhall.runtime.errors import AccessDenied, AlreadyInitialized, InvalidRequest
from guildhall.runtime.gates import parse_capabilities
from guildhall.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int, float)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _require_system_env(env: TxEnvelope) -> None:
    if bool(env.system) and env.sender == SYSTEM_SENDER:
        return
    raise AccessDenied("system_tx_required", {"tx_type": env.tx_type, "sender": env.sender})


def _bind_address(root: Json, key: str, addr: str, *, what: str) -> bool:
    cur = _as_str(root.get(key)).lower()
    if cur and cur != ZERO_ADDRESS:
        if cur != addr:
            raise AlreadyInitialized(f"{what}_already_bound", {"current": cur, "requested": addr})
        return False
    root[key] = addr
    return True


def _apply_deployment_set(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    payload = _as_dict(env.payload)
    changed: List[str] = []

    if payload.get("onboarding_address") is not None:
        addr = payload_address(payload, "onboarding_address")
        onb = state.setdefault("onboarding", {})
        onb.setdefault("nonces", {})
        if _bind_address(onb, "address", addr, what="onboarding"):
            changed.append("onboarding_address")

    if payload.get("custody_address") is not None:
        addr = payload_address(payload, "custody_address")
        cus = state.setdefault("custody", {})
        if _bind_address(cus, "address", addr, what="custody"):
            changed.append("custody_address")

    if payload.get("weth_token") is not None:
        addr = payload_address(payload, "weth_token")
        params = state.setdefault("params", {})
        if _bind_address(params, "weth_token", addr, what="weth_token"):
            changed.append("weth_token")

    return {"applied": "DEPLOYMENT_SET", "changed": changed}


def _positive(payload: Json, key: str, default: Optional[int] = None) -> int:
    if payload.get(key) is None and default is not None:
        return int(default)
    v = payload_amount(payload, key)
    if v <= 0:
        raise InvalidRequest(f"{key}_must_be_positive", {key: v})
    return v


def normalize_org_config(payload: Json) -> Json:
    """Validate an onboarding configuration; returns the canonical dict."""
    can_top_up = payload.get("can_top_up", False)
    if not isinstance(can_top_up, bool):
        raise InvalidRequest("invalid_can_top_up", {"can_top_up": can_top_up})

    token = ETH_TOKEN
    if payload.get("token") is not None:
        token = payload_address(payload, "token", allow_zero=True)
    fund_target = ZERO_ADDRESS
    if payload.get("fund_target") is not None:
        fund_target = payload_address(payload, "fund_target", allow_zero=True)

    return {
        "kyc_signer": payload_address(payload, "kyc_signer"),
        "chunk_size": _positive(payload, "chunk_size"),
        "units_per_chunk": _positive(payload, "units_per_chunk", default=1),
        "maximum_chunks": _positive(payload, "maximum_chunks"),
        "can_top_up": can_top_up,
        "token": token,
        "fund_target": fund_target,
    }


def _apply_org_configure(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    payload = _as_dict(env.payload)
    org = payload_address(payload, "organization")
    cfg = normalize_org_config(payload)

    o = ensure_org_root(state, org)
    o["config"] = cfg
    return {"applied": "ORG_CONFIGURE", "organization": org, "config": dict(cfg)}


def _grant_args(payload: Json) -> tuple[str, str, List[str]]:
    org = payload_address(payload, "organization")
    principal = payload_address(payload, "principal")
    raw = payload.get("capabilities")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not raw:
        raise InvalidRequest("missing_capabilities", {})
    try:
        caps = [c.value for c in parse_capabilities(raw)]
    except ValueError as e:
        raise InvalidRequest("unknown_capability", {"error": str(e)}) from None
    return org, principal, caps


def _apply_acl_grant(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    org, principal, caps = _grant_args(_as_dict(env.payload))
    acl = ensure_org_root(state, org)["acl"]
    cur = acl.get(principal)
    if not isinstance(cur, list):
        cur = []
    for c in caps:
        if c not in cur:
            cur.append(c)
    acl[principal] = sorted(cur)
    return {"applied": "ACL_GRANT", "organization": org, "principal": principal, "capabilities": list(acl[principal])}


def _apply_acl_revoke(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    org, principal, caps = _grant_args(_as_dict(env.payload))
    acl = ensure_org_root(state, org)["acl"]
    cur = acl.get(principal)
    if not isinstance(cur, list):
        cur = []
    remaining = sorted(c for c in cur if c not in caps)
    if remaining:
        acl[principal] = remaining
    else:
        acl.pop(principal, None)
    return {"applied": "ACL_REVOKE", "organization": org, "principal": principal, "capabilities": remaining}


REGISTRY_TX_TYPES: Set[str] = {
    "DEPLOYMENT_SET",
    "ORG_CONFIGURE",
    "ACL_GRANT",
    "ACL_REVOKE",
}


def apply_registry(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in REGISTRY_TX_TYPES:
        return None

    if t == "DEPLOYMENT_SET":
        return _apply_deployment_set(state, env)
    if t == "ORG_CONFIGURE":
        return _apply_org_configure(state, env)
    if t == "ACL_GRANT":
        return _apply_acl_grant(state, env)
    if t == "ACL_REVOKE":
        return _apply_acl_revoke(state, env)

    return None


__all__ = ["REGISTRY_TX_TYPES", "apply_registry", "normalize_org_config"]
