# src/guildhall/runtime/org_config.py
from __future__ import annotations

"""Deployment file: contract addresses, organizations, grants, allocations.

Accepted as JSON, or YAML when the file suffix is .yaml / .yml:

  deployment:
    onboarding_address: "0x..."
    custody_address:    "0x..."
    weth_token:         "0x..."
  organizations:
    - address: "0x..."
      onboarding: {kyc_signer, chunk_size, units_per_chunk, maximum_chunks,
                   can_top_up, token, fund_target}
      acl: {"0x<principal>": ["ADD_TO_BALANCE", "NEW_MEMBER"]}
      custody: {admin: "0x..."}          # at most one organization
  allocations:                           # applied once, on a fresh ledger
    native: {"0x<addr>": 1000}
    tokens: {"0x<token>": {"0x<addr>": 1000}}

to_system_txs() turns the file into the system transactions that install it,
so boot goes through the same apply path as everything else.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from guildhall.ledger.constants import SYSTEM_SENDER
from guildhall.runtime.gates import parse_capabilities
from guildhall.util.address import normalize_address

Json = Dict[str, Any]


@dataclass(frozen=True)
class OrgDeployment:
    address: str
    onboarding: Json = field(default_factory=dict)
    acl: Dict[str, List[str]] = field(default_factory=dict)
    custody_admin: Optional[str] = None


@dataclass(frozen=True)
class OrgConfigFile:
    onboarding_address: Optional[str] = None
    custody_address: Optional[str] = None
    weth_token: Optional[str] = None
    organizations: List[OrgDeployment] = field(default_factory=list)
    native_allocations: Dict[str, int] = field(default_factory=dict)
    token_allocations: Dict[str, Dict[str, int]] = field(default_factory=dict)


def _opt_addr(v: Any, what: str) -> Optional[str]:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    try:
        return normalize_address(v)
    except ValueError as e:
        raise ValueError(f"{what}: {e}") from None


def _read_raw(path: Path) -> Json:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        # Import locally to keep JSON-only deployments light.
        import yaml

        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("org config must be a mapping at top level")
    return raw


def parse_org_config(raw: Json) -> OrgConfigFile:
    dep = raw.get("deployment") if isinstance(raw.get("deployment"), dict) else {}

    orgs: List[OrgDeployment] = []
    custody_orgs = 0
    for i, rec in enumerate(raw.get("organizations") or []):
        if not isinstance(rec, dict):
            raise ValueError(f"organizations[{i}] must be a mapping")
        addr = _opt_addr(rec.get("address"), f"organizations[{i}].address")
        if addr is None:
            raise ValueError(f"organizations[{i}].address is required")

        acl: Dict[str, List[str]] = {}
        for principal, caps in (rec.get("acl") or {}).items():
            p = _opt_addr(principal, f"organizations[{i}].acl principal")
            if p is None:
                continue
            acl[p] = [c.value for c in parse_capabilities(caps if isinstance(caps, list) else [caps])]

        custody = rec.get("custody") if isinstance(rec.get("custody"), dict) else None
        admin = _opt_addr(custody.get("admin"), f"organizations[{i}].custody.admin") if custody else None
        if custody is not None:
            if admin is None:
                raise ValueError(f"organizations[{i}].custody.admin is required")
            custody_orgs += 1

        onboarding = rec.get("onboarding") if isinstance(rec.get("onboarding"), dict) else {}
        orgs.append(OrgDeployment(address=addr, onboarding=dict(onboarding), acl=acl, custody_admin=admin))

    if custody_orgs > 1:
        raise ValueError("at most one organization may bind the custody registry")

    alloc = raw.get("allocations") if isinstance(raw.get("allocations"), dict) else {}
    native: Dict[str, int] = {}
    for a, amt in (alloc.get("native") or {}).items():
        native[normalize_address(a)] = int(amt)
    tokens: Dict[str, Dict[str, int]] = {}
    for tok, rows in (alloc.get("tokens") or {}).items():
        tokens[normalize_address(tok)] = {normalize_address(a): int(amt) for a, amt in (rows or {}).items()}

    return OrgConfigFile(
        onboarding_address=_opt_addr(dep.get("onboarding_address"), "deployment.onboarding_address"),
        custody_address=_opt_addr(dep.get("custody_address"), "deployment.custody_address"),
        weth_token=_opt_addr(dep.get("weth_token"), "deployment.weth_token"),
        organizations=orgs,
        native_allocations=native,
        token_allocations=tokens,
    )


def load_org_config(path: str) -> OrgConfigFile:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(str(p))
    return parse_org_config(_read_raw(p))


def _sys(tx_type: str, payload: Json) -> Json:
    return {"tx_type": tx_type, "sender": SYSTEM_SENDER, "nonce": 0, "payload": payload, "system": True}


def to_system_txs(cfg: OrgConfigFile, *, include_allocations: bool = False) -> List[Json]:
    """System envelopes that install `cfg`. Custody initialization is not included."""
    out: List[Json] = []

    dep: Json = {}
    if cfg.onboarding_address:
        dep["onboarding_address"] = cfg.onboarding_address
    if cfg.custody_address:
        dep["custody_address"] = cfg.custody_address
    if cfg.weth_token:
        dep["weth_token"] = cfg.weth_token
    if dep:
        out.append(_sys("DEPLOYMENT_SET", dep))

    for org in cfg.organizations:
        if org.onboarding:
            out.append(_sys("ORG_CONFIGURE", {"organization": org.address, **org.onboarding}))
        for principal, caps in sorted(org.acl.items()):
            if caps:
                out.append(
                    _sys("ACL_GRANT", {"organization": org.address, "principal": principal, "capabilities": list(caps)})
                )

    if include_allocations:
        for addr, amt in sorted(cfg.native_allocations.items()):
            out.append(_sys("NATIVE_MINT", {"to": addr, "amount": int(amt)}))
        for tok, rows in sorted(cfg.token_allocations.items()):
            for addr, amt in sorted(rows.items()):
                out.append(_sys("TOKEN_MINT", {"token": tok, "to": addr, "amount": int(amt)}))

    return out


def custody_org(cfg: OrgConfigFile) -> Optional[OrgDeployment]:
    for org in cfg.organizations:
        if org.custody_admin:
            return org
    return None


__all__ = [
    "OrgConfigFile",
    "OrgDeployment",
    "custody_org",
    "load_org_config",
    "parse_org_config",
    "to_system_txs",
]
