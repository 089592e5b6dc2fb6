from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict

from guildhall.ledger.constants import ZERO_ADDRESS


Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class GuildView:
    """
    Immutable read-only ledger view used by admission, gates and the HTTP reads.
    """

    chain_id: int = 0
    accounts: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    orgs: Dict[str, Any] = field(default_factory=dict)
    onboarding: Dict[str, Any] = field(default_factory=dict)
    custody: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "GuildView":
        def _d(key: str) -> Dict[str, Any]:
            v = state.get(key)
            return copy.deepcopy(v) if isinstance(v, dict) else {}

        return cls(
            chain_id=int(state.get("chain_id", 0) or 0),
            accounts=_d("accounts"),
            params=_d("params"),
            orgs=_d("orgs"),
            onboarding=_d("onboarding"),
            custody=_d("custody"),
        )

    def get_account(self, account_id: str) -> Dict[str, Any]:
        acct = self.accounts.get(account_id)
        return acct if isinstance(acct, dict) else {}

    def get_nonce(self, account_id: str) -> int:
        acct = self.get_account(account_id)
        try:
            return int(acct.get("nonce", 0))
        except Exception:
            return 0

    def get_org(self, org: str) -> Dict[str, Any]:
        o = self.orgs.get(org)
        return o if isinstance(o, dict) else {}

    def balance_of(self, org: str, holder: str, token: str) -> int:
        bank = self.get_org(org).get("bank")
        if not isinstance(bank, dict):
            return 0
        balances = bank.get("balances")
        if not isinstance(balances, dict):
            return 0
        row = balances.get(holder)
        if not isinstance(row, dict):
            return 0
        return int(row.get(token, 0) or 0)

    def is_member(self, org: str, member: str) -> bool:
        bank = self.get_org(org).get("bank")
        if not isinstance(bank, dict):
            return False
        members = bank.get("members")
        if not isinstance(members, dict):
            return False
        rec = members.get(member)
        return isinstance(rec, dict) and bool(rec.get("active", False))

    def member_nonce(self, member: str) -> int:
        nonces = self.onboarding.get("nonces")
        if not isinstance(nonces, dict):
            return 0
        return int(nonces.get(member, 0) or 0)

    @property
    def onboarding_address(self) -> str:
        return str(self.onboarding.get("address") or ZERO_ADDRESS)

    @property
    def custody_address(self) -> str:
        return str(self.custody.get("address") or ZERO_ADDRESS)
