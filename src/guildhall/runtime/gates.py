from __future__ import annotations

"""Capability gate.

Every privileged call is checked here against an explicit, enumerated
capability set. Grants are per organization:

  state["orgs"][org]["acl"][principal] = ["ADD_TO_BALANCE", "NEW_MEMBER", ...]

Grants are installed and removed only by system transactions (ACL_GRANT /
ACL_REVOKE) during deployment.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from guildhall.runtime.errors import AccessDenied

Json = Dict[str, Any]


class Capability(str, Enum):
    ADD_TO_BALANCE = "ADD_TO_BALANCE"
    NEW_MEMBER = "NEW_MEMBER"
    COLLECT_NFT = "COLLECT_NFT"
    INTERNAL_TRANSFER = "INTERNAL_TRANSFER"
    WITHDRAW_NFT = "WITHDRAW_NFT"


def parse_capability(v: Any) -> Optional[Capability]:
    if isinstance(v, Capability):
        return v
    s = str(v or "").strip().upper()
    try:
        return Capability(s)
    except ValueError:
        return None


def parse_capabilities(values: Iterable[Any]) -> List[Capability]:
    out: List[Capability] = []
    for v in values:
        cap = parse_capability(v)
        if cap is None:
            raise ValueError(f"unknown capability: {v!r}")
        if cap not in out:
            out.append(cap)
    return out


def _grants_from_state(state: Json, org: str, principal: str) -> Optional[List[str]]:
    """Capabilities held by `principal` in `org`; None when `org` is not configured."""
    orgs = state.get("orgs")
    o = orgs.get(org) if isinstance(orgs, dict) and org else None
    if not isinstance(o, dict) or not o:
        return None
    acl = o.get("acl")
    caps = acl.get(principal) if isinstance(acl, dict) else None
    return [str(c) for c in caps] if isinstance(caps, list) else []


def resolve_capability(state: Json, *, org: str, principal: str, cap: Capability) -> Tuple[bool, Json]:
    """
    Returns (ok, meta). On deny, meta carries a stable 'reason'.
    """
    grants = _grants_from_state(state, org, principal)
    if grants is None:
        return False, {"reason": "unknown_organization", "organization": org}
    if cap.value in grants:
        return True, {}
    return False, {
        "reason": "capability_required",
        "organization": org,
        "principal": principal,
        "capability": cap.value,
    }


def has_capability(state: Json, *, org: str, principal: str, cap: Capability) -> bool:
    ok, _ = resolve_capability(state, org=org, principal=principal, cap=cap)
    return ok


def require_capability(state: Json, *, org: str, principal: str, cap: Capability) -> None:
    """Apply-time gate; raises AccessDenied when `principal` lacks `cap` in `org`."""
    ok, meta = resolve_capability(state, org=org, principal=principal, cap=cap)
    if ok:
        return
    reason = meta.pop("reason")
    meta.setdefault("principal", principal)
    meta.setdefault("capability", cap.value)
    raise AccessDenied(reason, meta)


__all__ = [
    "Capability",
    "parse_capability",
    "parse_capabilities",
    "resolve_capability",
    "has_capability",
    "require_capability",
]
