# src/guildhall/runtime/apply/custody.py
from __future__ import annotations

"""NFT custody registry.

The registry keeps an internal ownership record for every non-fungible token it
actually holds on behalf of one organization:

  state["custody"] = {
    "address":      <registry address, bound at deployment>,
    "initialized":  bool,
    "organization": <org address>,
    "admin":        <address>,
    "collections":  [collection, ...],                 # ordered, no gaps
    "tokens":       {collection: [token_id, ...]},     # ordered, no gaps
    "owners":       {"<collection>#<token_id>": owner},
  }

A token enters the record through one of two paths:

  push  a safe transfer / safe mint to the registry runs on_nft_received()
        inside the same transaction.
  pull  a plain transfer leaves the registry unaware; CUSTODY_UPDATE_COLLECTION
        or CUSTODY_COLLECT reconciles afterwards.

Both paths end in _register_if_absent(). Removal (withdraw) uses swap-and-pop
on both ordered indexes.
"""

from typing import Any, Dict, List, Optional, Set

from guildhall.ledger.constants import GUILD, ZERO_ADDRESS
from guildhall.runtime.apply.assets import (
    nft_approved,
    nft_move,
    nft_owner_of,
    payload_address,
    payload_token_id,
)
from guildhall.runtime.errors import (
    AccessDenied,
    AlreadyInitialized,
    InvalidRequest,
    NotFound,
    ReconciliationNotAllowed,
)
from guildhall.runtime.gates import Capability, has_capability, require_capability
from guildhall.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int, float)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _owner_key(collection: str, token_id: int) -> str:
    return f"{collection}#{int(token_id)}"


def _ensure_custody_root(state: Json) -> Json:
    root = state.get("custody")
    if not isinstance(root, dict):
        root = {}
        state["custody"] = root
    root.setdefault("initialized", False)
    root.setdefault("collections", [])
    root.setdefault("tokens", {})
    root.setdefault("owners", {})
    return root


def _registry_address(root: Json) -> str:
    addr = _as_str(root.get("address")).lower()
    if not addr or addr == ZERO_ADDRESS:
        raise NotFound("custody_not_deployed", {})
    return addr


def _initialized_root(state: Json) -> Json:
    root = _ensure_custody_root(state)
    _registry_address(root)
    if not bool(root.get("initialized", False)):
        raise NotFound("custody_not_initialized", {})
    return root


def _require_org(root: Json, org: str) -> None:
    bound = _as_str(root.get("organization")).lower()
    if org != bound:
        raise AccessDenied("wrong_organization", {"organization": org, "bound": bound})


def _register_if_absent(root: Json, collection: str, token_id: int) -> bool:
    """Create the record for (collection, token_id) owned by GUILD; idempotent."""
    key = _owner_key(collection, token_id)
    owners = root["owners"]
    if _as_str(owners.get(key)):
        return False

    owners[key] = GUILD
    tokens = root["tokens"]
    ids = tokens.get(collection)
    if not isinstance(ids, list):
        ids = []
        tokens[collection] = ids
        root["collections"].append(collection)
    ids.append(int(token_id))
    return True


def _swap_and_pop(seq: List[Any], item: Any) -> None:
    i = seq.index(item)
    last = seq.pop()
    if i < len(seq):
        seq[i] = last


def _remove_record(root: Json, collection: str, token_id: int) -> None:
    root["owners"].pop(_owner_key(collection, token_id), None)
    ids = root["tokens"].get(collection)
    if not isinstance(ids, list):
        return
    _swap_and_pop(ids, int(token_id))
    if not ids:
        root["tokens"].pop(collection, None)
        _swap_and_pop(root["collections"], collection)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def collection_count(state: Json) -> int:
    return len(_as_dict(state.get("custody")).get("collections") or [])


def collection_at(state: Json, index: int) -> str:
    cols = _as_dict(state.get("custody")).get("collections") or []
    i = int(index)
    if i < 0 or i >= len(cols):
        raise NotFound("collection_index_out_of_range", {"index": i, "count": len(cols)})
    return str(cols[i])


def token_count(state: Json, collection: str) -> int:
    tokens = _as_dict(_as_dict(state.get("custody")).get("tokens"))
    return len(tokens.get(collection) or [])


def token_at(state: Json, collection: str, index: int) -> int:
    tokens = _as_dict(_as_dict(state.get("custody")).get("tokens"))
    ids = tokens.get(collection) or []
    i = int(index)
    if i < 0 or i >= len(ids):
        raise NotFound("token_index_out_of_range", {"collection": collection, "index": i, "count": len(ids)})
    return int(ids[i])


def owner_of(state: Json, collection: str, token_id: int) -> str:
    owners = _as_dict(_as_dict(state.get("custody")).get("owners"))
    return _as_str(owners.get(_owner_key(collection, token_id))) or ZERO_ADDRESS


# ---------------------------------------------------------------------------
# Push path
# ---------------------------------------------------------------------------


def _data_bytes(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    s = _as_str(data)
    if s.startswith(("0x", "0X")):
        s = s[2:]
    try:
        return bytes.fromhex(s)
    except ValueError:
        return b""


def _data_organization(data: Any) -> str:
    """Destination organization named by a transfer's data payload ('' when none).

    The payload is opaque. Only a 20-byte address, or one left-padded to a
    32-byte word, names an organization; other bytes are ignored.
    """
    if isinstance(data, dict):
        data = data.get("organization")
    raw = _data_bytes(data)
    if len(raw) >= 32 and raw[:12] == b"\x00" * 12:
        raw = raw[12:32]
    if len(raw) != 20:
        return ""
    addr = "0x" + raw.hex()
    return "" if addr == ZERO_ADDRESS else addr


def on_nft_received(
    state: Json,
    *,
    operator: str,
    frm: str,
    collection: str,
    token_id: int,
    data: Any = None,
) -> Json:
    """Receive hook for safe transfers into the registry."""
    root = _initialized_root(state)
    named = _data_organization(data)
    if named and named != _as_str(root.get("organization")).lower():
        raise ReconciliationNotAllowed(
            "update_not_allowed",
            {"organization": named, "bound": root.get("organization")},
        )
    registered = _register_if_absent(root, collection, token_id)
    return {
        "collection": collection,
        "token_id": int(token_id),
        "owner": GUILD,
        "registered": registered,
        "operator": operator,
        "from": frm,
    }


# ---------------------------------------------------------------------------
# Appliers
# ---------------------------------------------------------------------------


def _apply_custody_initialize(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    root = _ensure_custody_root(state)
    _registry_address(root)
    if bool(root.get("initialized", False)):
        raise AlreadyInitialized("already_initialized", {"organization": root.get("organization")})

    org = payload_address(payload, "organization")
    admin = payload_address(payload, "admin")
    root["initialized"] = True
    root["organization"] = org
    root["admin"] = admin
    return {"applied": "CUSTODY_INITIALIZE", "organization": org, "admin": admin}


def _apply_custody_update_collection(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)

    root = _initialized_root(state)
    registry = _registry_address(root)
    if nft_owner_of(state, collection, token_id) != registry:
        raise ReconciliationNotAllowed("update_not_allowed", {"collection": collection, "token_id": token_id})

    registered = _register_if_absent(root, collection, token_id)
    return {
        "applied": "CUSTODY_UPDATE_COLLECTION",
        "collection": collection,
        "token_id": token_id,
        "registered": registered,
    }


def _apply_custody_collect(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    org = payload_address(payload, "organization")
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)

    root = _initialized_root(state)
    _require_org(root, org)
    require_capability(state, org=org, principal=env.sender, cap=Capability.COLLECT_NFT)

    registry = _registry_address(root)
    holder = nft_owner_of(state, collection, token_id)
    pulled = False
    if holder != registry:
        if holder == ZERO_ADDRESS:
            raise NotFound("token_not_found", {"collection": collection, "token_id": token_id})
        if nft_approved(state, collection, token_id) != registry:
            raise ReconciliationNotAllowed(
                "registry_not_approved",
                {"collection": collection, "token_id": token_id, "holder": holder},
            )
        nft_move(state, collection, token_id, holder, registry)
        pulled = True

    registered = _register_if_absent(root, collection, token_id)
    return {
        "applied": "CUSTODY_COLLECT",
        "collection": collection,
        "token_id": token_id,
        "pulled": pulled,
        "registered": registered,
    }


def _apply_custody_internal_transfer(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    org = payload_address(payload, "organization")
    new_owner = payload_address(payload, "new_owner")
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)

    root = _initialized_root(state)
    _require_org(root, org)
    require_capability(state, org=org, principal=env.sender, cap=Capability.INTERNAL_TRANSFER)

    key = _owner_key(collection, token_id)
    prev = _as_str(root["owners"].get(key))
    if not prev:
        raise NotFound("asset_not_registered", {"collection": collection, "token_id": token_id})

    root["owners"][key] = new_owner
    return {
        "applied": "CUSTODY_INTERNAL_TRANSFER",
        "collection": collection,
        "token_id": token_id,
        "previous_owner": prev,
        "new_owner": new_owner,
    }


def _apply_custody_withdraw(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    org = payload_address(payload, "organization")
    recipient = payload_address(payload, "recipient")
    collection = payload_address(payload, "collection")
    token_id = payload_token_id(payload)

    root = _initialized_root(state)
    _require_org(root, org)

    owner = _as_str(root["owners"].get(_owner_key(collection, token_id))) or ZERO_ADDRESS
    privileged = has_capability(state, org=org, principal=env.sender, cap=Capability.WITHDRAW_NFT)
    if not privileged and (owner == ZERO_ADDRESS or env.sender != owner):
        raise AccessDenied(
            "capability_required",
            {"organization": org, "principal": env.sender, "capability": Capability.WITHDRAW_NFT.value},
        )

    if owner == ZERO_ADDRESS:
        raise NotFound("asset_not_registered", {"collection": collection, "token_id": token_id})

    registry = _registry_address(root)
    if recipient == registry:
        raise InvalidRequest("recipient_is_registry", {"recipient": recipient})

    if owner != GUILD and recipient != owner:
        raise AccessDenied("recipient_not_owner", {"owner": owner, "recipient": recipient})

    nft_move(state, collection, token_id, registry, recipient)
    _remove_record(root, collection, token_id)
    return {
        "applied": "CUSTODY_WITHDRAW",
        "collection": collection,
        "token_id": token_id,
        "recipient": recipient,
        "previous_owner": owner,
    }


CUSTODY_TX_TYPES: Set[str] = {
    "CUSTODY_INITIALIZE",
    "CUSTODY_UPDATE_COLLECTION",
    "CUSTODY_COLLECT",
    "CUSTODY_INTERNAL_TRANSFER",
    "CUSTODY_WITHDRAW",
}


def apply_custody(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in CUSTODY_TX_TYPES:
        return None

    if t == "CUSTODY_INITIALIZE":
        return _apply_custody_initialize(state, env)
    if t == "CUSTODY_UPDATE_COLLECTION":
        return _apply_custody_update_collection(state, env)
    if t == "CUSTODY_COLLECT":
        return _apply_custody_collect(state, env)
    if t == "CUSTODY_INTERNAL_TRANSFER":
        return _apply_custody_internal_transfer(state, env)
    if t == "CUSTODY_WITHDRAW":
        return _apply_custody_withdraw(state, env)

    return None


__all__ = [
    "CUSTODY_TX_TYPES",
    "apply_custody",
    "on_nft_received",
    "collection_count",
    "collection_at",
    "token_count",
    "token_at",
    "owner_of",
]
