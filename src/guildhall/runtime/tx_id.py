from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

from guildhall.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def compute_tx_id(
    *,
    chain_id: int,
    tx_type: str,
    sender: str,
    nonce: int,
    payload: Json,
    value: int = 0,
    system: bool = False,
) -> str:
    """sha256 hex over the canonical JSON of every field that changes the outcome.

    chain_id keeps ids distinct across deployments and value distinguishes two
    contributions that differ only in attached funds. The signature is left
    out: the same call re-signed (or signed with the other v encoding) keeps
    its id.
    """
    body = {
        "chain_id": int(chain_id),
        "tx_type": str(tx_type),
        "sender": str(sender),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
        "value": int(value),
        "system": bool(system),
    }
    canon = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canon.encode("utf-8")).hexdigest()


def compute_tx_id_from_envelope(chain_id: int, env: TxEnvelope) -> str:
    return compute_tx_id(
        chain_id=chain_id,
        tx_type=env.tx_type,
        sender=env.sender,
        nonce=env.nonce,
        payload=env.payload,
        value=env.value,
        system=env.system,
    )


def tx_id_or_empty(chain_id: int, raw: Any) -> str:
    """Id of a raw envelope that may not normalize; "" when it cannot be parsed at all.

    Used to key rejection log rows for envelopes that failed before apply.
    """
    try:
        env = TxEnvelope.from_json(raw)
    except (TypeError, ValueError):
        return ""
    return compute_tx_id_from_envelope(chain_id, env)
