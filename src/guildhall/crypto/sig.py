# src/guildhall/crypto/sig.py
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Union

from guildhall.crypto.coupon import recover_signer, sign_digest
from guildhall.ledger.constants import DEFAULT_CHAIN_ID
from guildhall.runtime.errors import SignatureInvalid

Json = Dict[str, Any]


def canonical_tx_message(
    *,
    chain_id: int,
    tx_type: str,
    sender: str,
    nonce: int,
    payload: Json,
    value: int = 0,
) -> bytes:
    # chain_id binds the signature to one ledger; it is not an envelope field.
    obj: Json = {
        "chain_id": int(chain_id),
        "tx_type": str(tx_type),
        "sender": str(sender),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
        "value": int(value),
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def tx_digest(tx: Json, *, chain_id: int) -> bytes:
    msg = canonical_tx_message(
        chain_id=chain_id,
        tx_type=str(tx.get("tx_type") or ""),
        sender=str(tx.get("sender") or ""),
        nonce=int(tx.get("nonce") or 0),
        payload=tx.get("payload") if isinstance(tx.get("payload"), dict) else {},
        value=int(tx.get("value") or 0),
    )
    return hashlib.sha256(msg).digest()


def verify_tx_signature(tx: Json, *, chain_id: int = DEFAULT_CHAIN_ID) -> bool:
    """True iff tx['sig'] over the `chain_id` digest recovers to tx['sender']."""
    sig = str(tx.get("sig") or "").strip()
    sender = str(tx.get("sender") or "").strip().lower()
    if not sig or not sender:
        return False
    try:
        return recover_signer(tx_digest(tx, chain_id=chain_id), sig) == sender
    except SignatureInvalid:
        return False


def sign_tx_envelope_dict(*, tx: Json, privkey: Union[str, bytes], chain_id: int = DEFAULT_CHAIN_ID) -> Json:
    """Return a copy of tx with its 'sig' field populated for `chain_id`.

    Expected shape (extra keys allowed):
      {
        "tx_type": str,
        "sender": str,
        "nonce": int,
        "payload": dict,
        "value": int
      }
    """
    out = dict(tx)
    out["tx_type"] = str(tx.get("tx_type") or "")
    out["sender"] = str(tx.get("sender") or "")
    out["nonce"] = int(tx.get("nonce") or 0)
    out["payload"] = tx.get("payload") if isinstance(tx.get("payload"), dict) else {}
    out["value"] = int(tx.get("value") or 0)
    out["sig"] = sign_digest(digest=tx_digest(out, chain_id=chain_id), privkey=privkey)
    return out
