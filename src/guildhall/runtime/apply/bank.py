# src/guildhall/runtime/apply/bank.py
from __future__ import annotations

"""Per-organization bank: internal balances and membership flags.

State layout:

  state["orgs"][org] = {
    "config":  {...},                          # onboarding config, see registry.py
    "bank":    {"balances": {holder: {token: int}},
                "members":  {addr: {"active": bool}}},
    "acl":     {principal: [capability, ...]},
  }

Every credit to a holder also credits the TOTAL bookkeeping account for the
same token. Only the onboarding applier writes through this module; everything
else reads.
"""

from typing import Any, Dict

from guildhall.ledger.constants import TOTAL
from guildhall.runtime.errors import InvalidRequest, NotFound

Json = Dict[str, Any]


def ensure_org_root(state: Json, org: str) -> Json:
    orgs = state.get("orgs")
    if not isinstance(orgs, dict):
        orgs = {}
        state["orgs"] = orgs
    o = orgs.get(org)
    if not isinstance(o, dict):
        o = {}
        orgs[org] = o
    o.setdefault("config", {})
    o.setdefault("acl", {})
    bank = o.get("bank")
    if not isinstance(bank, dict):
        bank = {}
        o["bank"] = bank
    bank.setdefault("balances", {})
    bank.setdefault("members", {})
    return o


def get_org(state: Json, org: str) -> Json:
    """Return an existing organization record or raise NotFound."""
    orgs = state.get("orgs")
    o = orgs.get(org) if isinstance(orgs, dict) else None
    if not isinstance(o, dict):
        raise NotFound("organization_not_found", {"organization": org})
    return ensure_org_root(state, org)


def balance_of(state: Json, org: str, holder: str, token: str) -> int:
    orgs = state.get("orgs")
    o = orgs.get(org) if isinstance(orgs, dict) else None
    if not isinstance(o, dict):
        return 0
    bank = o.get("bank") if isinstance(o.get("bank"), dict) else {}
    row = (bank.get("balances") or {}).get(holder)
    if not isinstance(row, dict):
        return 0
    return int(row.get(token, 0) or 0)


def add_to_balance(state: Json, org: str, holder: str, token: str, amount: int) -> int:
    """Credit `amount` of `token` to `holder` (and TOTAL); returns the new holder balance."""
    amt = int(amount)
    if amt < 0:
        raise InvalidRequest("negative_amount", {"amount": amt})
    o = get_org(state, org)
    balances = o["bank"]["balances"]

    row = balances.setdefault(holder, {})
    row[token] = int(row.get(token, 0) or 0) + amt
    if holder != TOTAL:
        total_row = balances.setdefault(TOTAL, {})
        total_row[token] = int(total_row.get(token, 0) or 0) + amt
    return int(row[token])


def is_member(state: Json, org: str, member: str) -> bool:
    orgs = state.get("orgs")
    o = orgs.get(org) if isinstance(orgs, dict) else None
    if not isinstance(o, dict):
        return False
    bank = o.get("bank") if isinstance(o.get("bank"), dict) else {}
    rec = (bank.get("members") or {}).get(member)
    return isinstance(rec, dict) and bool(rec.get("active", False))


def activate_member(state: Json, org: str, member: str) -> bool:
    """Mark `member` active; returns True when the flag changed."""
    o = get_org(state, org)
    members = o["bank"]["members"]
    rec = members.get(member)
    if isinstance(rec, dict) and bool(rec.get("active", False)):
        return False
    members[member] = {"active": True}
    return True


__all__ = [
    "ensure_org_root",
    "get_org",
    "balance_of",
    "add_to_balance",
    "is_member",
    "activate_member",
]
