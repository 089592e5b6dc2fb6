# src/guildhall/runtime/apply/assets.py
from __future__ import annotations

"""Host asset layer: native currency, fungible tokens and non-fungible tokens.

State layout:

  state["native"][addr] = int
  state["tokens"][token] = {"balances": {addr: int}, "allowances": {owner: {spender: int}}}
  state["nfts"][collection] = {"owners": {"<id>": addr}, "approvals": {"<id>": addr}}

Token ids are unsigned integers; they are stored under their decimal string so
the state survives a JSON round trip.

The helpers below are the only code that moves assets. Onboarding and custody
call them inside their own transitions, so a later failure in the same
transaction rolls these movements back too.
"""

from typing import Any, Dict, Optional, Set

from guildhall.ledger.constants import SYSTEM_SENDER, ZERO_ADDRESS
from guildhall.runtime.errors import (
    AccessDenied,
    InsufficientBalance,
    InvalidRequest,
    NotFound,
    UnsupportedDirectValue,
)
from guildhall.runtime.tx_admission_types import TxEnvelope
from guildhall.util.address import normalize_address

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int, float)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _require_system_env(env: TxEnvelope) -> None:
    if bool(env.system) and env.sender == SYSTEM_SENDER:
        return
    raise AccessDenied("system_tx_required", {"tx_type": env.tx_type, "sender": env.sender})


def payload_address(payload: Json, key: str, *, allow_zero: bool = False) -> str:
    try:
        addr = normalize_address(payload.get(key))
    except ValueError:
        raise InvalidRequest(f"invalid_{key}", {key: payload.get(key)}) from None
    if not allow_zero and addr == ZERO_ADDRESS:
        raise InvalidRequest(f"zero_{key}", {key: addr})
    return addr


def payload_amount(payload: Json, key: str = "amount") -> int:
    v = payload.get(key)
    if isinstance(v, bool):
        raise InvalidRequest(f"invalid_{key}", {key: v})
    try:
        amt = int(v)
    except (TypeError, ValueError):
        raise InvalidRequest(f"invalid_{key}", {key: v}) from None
    if amt < 0:
        raise InvalidRequest(f"negative_{key}", {key: amt})
    return amt


def payload_token_id(payload: Json, key: str = "token_id") -> int:
    return payload_amount(payload, key)


# ---------------------------------------------------------------------------
# Native currency
# ---------------------------------------------------------------------------


def _native_root(state: Json) -> Json:
    root = state.get("native")
    if not isinstance(root, dict):
        root = {}
        state["native"] = root
    return root


def native_balance(state: Json, addr: str) -> int:
    return int(_native_root(state).get(addr, 0) or 0)


def native_credit(state: Json, addr: str, amount: int) -> None:
    root = _native_root(state)
    root[addr] = int(root.get(addr, 0) or 0) + int(amount)


def native_debit(state: Json, addr: str, amount: int) -> None:
    root = _native_root(state)
    have = int(root.get(addr, 0) or 0)
    if have < int(amount):
        raise InsufficientBalance("insufficient_native_balance", {"address": addr, "have": have, "need": int(amount)})
    root[addr] = have - int(amount)


def native_move(state: Json, frm: str, to: str, amount: int) -> None:
    native_debit(state, frm, amount)
    native_credit(state, to, amount)


# ---------------------------------------------------------------------------
# Fungible tokens
# ---------------------------------------------------------------------------


def _token_root(state: Json, token: str) -> Json:
    tokens = state.get("tokens")
    if not isinstance(tokens, dict):
        tokens = {}
        state["tokens"] = tokens
    t = tokens.get(token)
    if not isinstance(t, dict):
        t = {}
        tokens[token] = t
    t.setdefault("balances", {})
    t.setdefault("allowances", {})
    return t


def token_balance(state: Json, token: str, addr: str) -> int:
    tokens = state.get("tokens")
    t = tokens.get(token) if isinstance(tokens, dict) else None
    if not isinstance(t, dict):
        return 0
    return int(_as_dict(t.get("balances")).get(addr, 0) or 0)


def token_allowance(state: Json, token: str, owner: str, spender: str) -> int:
    tokens = state.get("tokens")
    t = tokens.get(token) if isinstance(tokens, dict) else None
    if not isinstance(t, dict):
        return 0
    return int(_as_dict(_as_dict(t.get("allowances")).get(owner)).get(spender, 0) or 0)


def token_credit(state: Json, token: str, addr: str, amount: int) -> None:
    balances = _token_root(state, token)["balances"]
    balances[addr] = int(balances.get(addr, 0) or 0) + int(amount)


def token_transfer(state: Json, token: str, frm: str, to: str, amount: int) -> None:
    amt = int(amount)
    balances = _token_root(state, token)["balances"]
    have = int(balances.get(frm, 0) or 0)
    if have < amt:
        raise InsufficientBalance(
            "insufficient_token_balance",
            {"token": token, "address": frm, "have": have, "need": amt},
        )
    balances[frm] = have - amt
    balances[to] = int(balances.get(to, 0) or 0) + amt


def token_transfer_from(state: Json, token: str, spender: str, frm: str, to: str, amount: int) -> None:
    amt = int(amount)
    allowances = _token_root(state, token)["allowances"]
    row = allowances.setdefault(frm, {})
    allowed = int(row.get(spender, 0) or 0)
    if allowed < amt:
        raise InsufficientBalance(
            "insufficient_allowance",
            {"token": token, "owner": frm, "spender": spender, "allowance": allowed, "need": amt},
        )
    token_transfer(state, token, frm, to, amt)
    row[spender] = allowed - amt


def wrapped_native_token(state: Json) -> str:
    params = _as_dict(state.get("params"))
    tok = _as_str(params.get("weth_token")).lower()
    if not tok or tok == ZERO_ADDRESS:
        raise InvalidRequest("wrapped_native_token_not_configured", {})
    return tok


def wrap_native(state: Json, holder: str, amount: int) -> str:
    """Convert `amount` of holder's native currency into the wrapped token; returns the token."""
    weth = wrapped_native_token(state)
    native_move(state, holder, weth, amount)
    token_credit(state, weth, holder, amount)
    return weth


# ---------------------------------------------------------------------------
# Non-fungible tokens
# ---------------------------------------------------------------------------


def _nft_root(state: Json, collection: str) -> Json:
    nfts = state.get("nfts")
    if not isinstance(nfts, dict):
        nfts = {}
        state["nfts"] = nfts
    c = nfts.get(collection)
    if not isinstance(c, dict):
        c = {}
        nfts[collection] = c
    c.setdefault("owners", {})
    c.setdefault("approvals", {})
    return c


def nft_owner_of(state: Json, collection: str, token_id: int) -> str:
    nfts = state.get("nfts")
    c = nfts.get(collection) if isinstance(nfts, dict) else None
    if not isinstance(c, dict):
        return ZERO_ADDRESS
    return str(_as_dict(c.get("owners")).get(str(int(token_id))) or ZERO_ADDRESS)


def nft_approved(state: Json, collection: str, token_id: int) -> str:
    nfts = state.get("nfts")
    c = nfts.get(collection) if isinstance(nfts, dict) else None
    if not isinstance(c, dict):
        return ZERO_ADDRESS
    return str(_as_dict(c.get("approvals")).get(str(int(token_id))) or ZERO_ADDRESS)


def nft_mint(state: Json, collection: str, token_id: int, to: str) -> None:
    c = _nft_root(state, collection)
    key = str(int(token_id))
    if key in c["owners"]:
        raise InvalidRequest("token_exists", {"collection": collection, "token_id": int(token_id)})
    c["owners"][key] = to


def nft_move(state: Json, collection: str, token_id: int, frm: str, to: str) -> None:
    """Move custody of one token; clears its single-token approval."""
    owner = nft_owner_of(state, collection, token_id)
    if owner == ZERO_ADDRESS:
        raise NotFound("token_not_found", {"collection": collection, "token_id": int(token_id)})
    if owner != frm:
        raise AccessDenied("from_not_owner", {"collection": collection, "token_id": int(token_id), "owner": owner, "from": frm})
    if to == ZERO_ADDRESS:
        raise InvalidRequest("zero_recipient", {"collection": collection, "token_id": int(token_id)})
    c = _nft_root(state, collection)
    key = str(int(token_id))
    c["owners"][key] = to
    c["approvals"].pop(key, None)


def nft_transfer_from(state: Json, operator: str, collection: str, token_id: int, frm: str, to: str) -> None:
    owner = nft_owner_of(state, collection, token_id)
    if owner == ZERO_ADDRESS:
        raise NotFound("token_not_found", {"collection": collection, "token_id": int(token_id)})
    if operator != owner and operator != nft_approved(state, collection, token_id):
        raise AccessDenied("not_owner_nor_approved", {"collection": collection, "token_id": int(token_id), "operator": operator})
    nft_move(state, collection, token_id, frm, to)


def _custody_address(state: Json) -> str:
    custody = _as_dict(state.get("custody"))
    return _as_str(custody.get("address")).lower() or ZERO_ADDRESS


def _notify_receiver(state: Json, *, operator: str, frm: str, to: str, collection: str, token_id: int, data: Any) -> Optional[Json]:
    if to == ZERO_ADDRESS or to != _custody_address(state):
        return None
    from guildhall.runtime.apply.custody import on_nft_received

    return on_nft_received(state, operator=operator, frm=frm, collection=collection, token_id=token_id, data=data)


# ---------------------------------------------------------------------------
# Appliers
# ---------------------------------------------------------------------------


def _apply_native_mint(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    payload = _as_dict(env.payload)
    to = payload_address(payload, "to")
    amount = payload_amount(payload)
    native_credit(state, to, amount)
    return {"applied": "NATIVE_MINT", "to": to, "amount": amount}


def _apply_native_transfer(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    to = payload_address(payload, "to")
    amount = int(env.value)
    if amount <= 0:
        raise InvalidRequest("missing_value", {"value": amount})
    if to == _custody_address(state):
        raise UnsupportedDirectValue("custody_rejects_value", {"to": to, "value": amount})
    native_move(state, env.sender, to, amount)
    return {"applied": "NATIVE_TRANSFER", "to": to, "amount": amount}


def _apply_token_mint(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    payload = _as_dict(env.payload)
    token = payload_address(payload, "token")
    to = payload_address(payload, "to")
    amount = payload_amount(payload)
    token_credit(state, token, to, amount)
    return {"applied": "TOKEN_MINT", "token": token, "to": to, "amount": amount}


def _apply_token_transfer(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    token = payload_address(payload, "token")
    to = payload_address(payload, "to")
    amount = payload_amount(payload)
    token_transfer(state, token, env.sender, to, amount)
    return {"applied": "TOKEN_TRANSFER", "token": token, "to": to, "amount": amount}


def _apply_token_approve(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    token = payload_address(payload, "token")
    spender = payload_address(payload, "spender")
    amount = payload_amount(payload)
    allowances = _token_root(state, token)["allowances"]
    allowances.setdefault(env.sender, {})[spender] = amount
    return {"applied": "TOKEN_APPROVE", "token": token, "spender": spender, "amount": amount}


def _apply_token_wrap(state: Json, env: TxEnvelope) -> Json:
    amount = int(env.value)
    if amount <= 0:
        raise InvalidRequest("missing_value", {"value": amount})
    token = wrap_native(state, env.sender, amount)
    return {"applied": "TOKEN_WRAP", "token": token, "amount": amount}


def _apply_nft_mint(state: Json, env: TxEnvelope) -> Json:
    _require_system_env(env)
    payload = _as_dict(env.payload)
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)
    to = payload_address(payload, "to")
    safe = bool(payload.get("safe", True))

    nft_mint(state, collection, token_id, to)
    out: Json = {"applied": "NFT_MINT", "collection": collection, "token_id": token_id, "to": to}
    if safe:
        hook = _notify_receiver(
            state,
            operator=env.sender,
            frm=ZERO_ADDRESS,
            to=to,
            collection=collection,
            token_id=token_id,
            data=payload.get("data"),
        )
        if hook is not None:
            out["custody"] = hook
    return out


def _apply_nft_approve(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)
    operator = payload_address(payload, "operator", allow_zero=True)

    owner = nft_owner_of(state, collection, token_id)
    if owner == ZERO_ADDRESS:
        raise NotFound("token_not_found", {"collection": collection, "token_id": token_id})
    if owner != env.sender:
        raise AccessDenied("not_token_owner", {"collection": collection, "token_id": token_id})

    approvals = _nft_root(state, collection)["approvals"]
    if operator == ZERO_ADDRESS:
        approvals.pop(str(token_id), None)
    else:
        approvals[str(token_id)] = operator
    return {"applied": "NFT_APPROVE", "collection": collection, "token_id": token_id, "operator": operator}


def _apply_nft_transfer_from(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)
    frm = payload_address(payload, "from")
    to = payload_address(payload, "to")
    nft_transfer_from(state, env.sender, collection, token_id, frm, to)
    return {"applied": "NFT_TRANSFER_FROM", "collection": collection, "token_id": token_id, "to": to}


def _apply_nft_safe_transfer_from(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)
    frm = payload_address(payload, "from")
    to = payload_address(payload, "to")
    nft_transfer_from(state, env.sender, collection, token_id, frm, to)

    out: Json = {"applied": "NFT_SAFE_TRANSFER_FROM", "collection": collection, "token_id": token_id, "to": to}
    hook = _notify_receiver(
        state,
        operator=env.sender,
        frm=frm,
        to=to,
        collection=collection,
        token_id=token_id,
        data=payload.get("data"),
    )
    if hook is not None:
        out["custody"] = hook
    return out


ASSET_TX_TYPES: Set[str] = {
    "NATIVE_MINT",
    "NATIVE_TRANSFER",
    "TOKEN_MINT",
    "TOKEN_TRANSFER",
    "TOKEN_APPROVE",
    "TOKEN_WRAP",
    "NFT_MINT",
    "NFT_APPROVE",
    "NFT_TRANSFER_FROM",
    "NFT_SAFE_TRANSFER_FROM",
}


def apply_assets(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in ASSET_TX_TYPES:
        return None

    if t == "NATIVE_MINT":
        return _apply_native_mint(state, env)
    if t == "NATIVE_TRANSFER":
        return _apply_native_transfer(state, env)
    if t == "TOKEN_MINT":
        return _apply_token_mint(state, env)
    if t == "TOKEN_TRANSFER":
        return _apply_token_transfer(state, env)
    if t == "TOKEN_APPROVE":
        return _apply_token_approve(state, env)
    if t == "TOKEN_WRAP":
        return _apply_token_wrap(state, env)

    if t == "NFT_MINT":
        return _apply_nft_mint(state, env)
    if t == "NFT_APPROVE":
        return _apply_nft_approve(state, env)
    if t == "NFT_TRANSFER_FROM":
        return _apply_nft_transfer_from(state, env)
    if t == "NFT_SAFE_TRANSFER_FROM":
        return _apply_nft_safe_transfer_from(state, env)

    return None


__all__ = ["ASSET_TX_TYPES", "apply_assets"]
