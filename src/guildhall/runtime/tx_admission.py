from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from guildhall.crypto.sig import verify_tx_signature
from guildhall.ledger.constants import DEFAULT_CHAIN_ID, SYSTEM_SENDER
from guildhall.ledger.state import GuildView
from guildhall.runtime.domain_dispatch import supported_tx_types
from guildhall.runtime.tx_admission_types import TxEnvelope, TxVerdict
from guildhall.util.address import validate_address

Json = Dict[str, Any]


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


@dataclass(frozen=True)
class AdmissionLimits:
    """Size caps applied to submitted envelopes before they reach the writer."""

    envelope_bytes: int = 32 * 1024
    payload_bytes: int = 16 * 1024
    payload_keys: int = 64
    string_bytes: int = 4 * 1024
    nesting: int = 6

    @classmethod
    def from_env(cls) -> "AdmissionLimits":
        d = cls()
        return cls(
            envelope_bytes=_env_int("GUILDHALL_MAX_TX_ENVELOPE_BYTES", d.envelope_bytes),
            payload_bytes=_env_int("GUILDHALL_MAX_TX_PAYLOAD_BYTES", d.payload_bytes),
            payload_keys=_env_int("GUILDHALL_MAX_TX_PAYLOAD_KEYS", d.payload_keys),
            string_bytes=_env_int("GUILDHALL_MAX_TX_STRING_BYTES", d.string_bytes),
            nesting=_env_int("GUILDHALL_MAX_TX_NESTING", d.nesting),
        )


def _encoded_size(obj: Any) -> Optional[int]:
    """Compact JSON size in bytes, or None when obj is not JSON-encodable."""
    if isinstance(obj, TxEnvelope):
        obj = obj.to_json()
    try:
        return len(json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True).encode("utf-8"))
    except (TypeError, ValueError):
        return None


def _payload_violations(v: Any, depth: int, limits: AdmissionLimits) -> Iterator[Tuple[str, Json]]:
    if depth > limits.nesting:
        yield "payload_too_deep", {"max_depth": limits.nesting}
        return
    if v is None or isinstance(v, (bool, int, float)):
        return
    if isinstance(v, str):
        n = len(v.encode("utf-8", errors="ignore"))
        if n > limits.string_bytes:
            yield "string_too_large", {"bytes": n, "max_bytes": limits.string_bytes}
        return
    if isinstance(v, list):
        for item in v:
            yield from _payload_violations(item, depth + 1, limits)
        return
    if isinstance(v, dict):
        for k, item in v.items():
            if not isinstance(k, str):
                yield "invalid_key_type", {"key_type": type(k).__name__}
                return
            yield from _payload_violations(item, depth + 1, limits)
        return
    yield "invalid_value_type", {"type": type(v).__name__}


def _check_payload(payload: Json, limits: AdmissionLimits) -> Optional[TxVerdict]:
    if len(payload) > limits.payload_keys:
        return TxVerdict.reject(
            "invalid_payload", "payload_too_many_keys", {"keys": len(payload), "max_keys": limits.payload_keys}
        )

    size = _encoded_size(payload)
    if size is not None and size > limits.payload_bytes:
        return TxVerdict.reject(
            "payload_too_large", "payload_exceeds_size_limit", {"bytes": size, "max_bytes": limits.payload_bytes}
        )

    for reason, details in _payload_violations(payload, 0, limits):
        return TxVerdict.reject("invalid_payload", reason, details)
    return None


def _check_shape(env: TxEnvelope) -> Optional[TxVerdict]:
    if not env.tx_type:
        return TxVerdict.reject("bad_shape", "missing_tx_type")
    if env.tx_type not in supported_tx_types():
        return TxVerdict.reject("unknown_tx", "tx_type_not_supported", {"tx_type": env.tx_type})

    # System transactions come from org config and tests, never from the wire.
    if env.system or env.sender == SYSTEM_SENDER:
        return TxVerdict.reject("forbidden", "system_tx_not_admissible", {"tx_type": env.tx_type})

    v = validate_address(env.sender)
    if not v.ok:
        return TxVerdict.reject("bad_shape", "invalid_sender", {"sender": env.sender, "reason": v.reason})
    if env.nonce < 0:
        return TxVerdict.reject("bad_shape", "nonce_must_be_nonnegative", {"nonce": env.nonce})
    if env.value < 0:
        return TxVerdict.reject("bad_shape", "value_must_be_nonnegative", {"value": env.value})
    return None


def admit_tx(
    tx: Any = None,
    ledger: Optional[GuildView] = None,
    *,
    allow_unsigned: bool = False,
    chain_id: Optional[int] = None,
) -> TxVerdict:
    """Cheap checks on an externally submitted envelope.

    Order: size, shape, payload limits, nonce (only when `ledger` is given),
    signature. Signatures are checked against `chain_id`, else the chain of
    `ledger`, else DEFAULT_CHAIN_ID. Apply re-validates everything that
    affects state; admission only keeps garbage away from the writer lock.
    """
    limits = AdmissionLimits.from_env()

    size = _encoded_size(tx)
    if size is not None and size > limits.envelope_bytes:
        return TxVerdict.reject(
            "tx_too_large", "tx_envelope_exceeds_size_limit", {"bytes": size, "max_bytes": limits.envelope_bytes}
        )

    if not isinstance(tx, (dict, TxEnvelope)):
        return TxVerdict.reject("bad_shape", "envelope_must_be_object", {"type": type(tx).__name__})
    if isinstance(tx, dict) and "payload" in tx and not isinstance(tx["payload"], (dict, type(None))):
        return TxVerdict.reject("invalid_payload", "payload_must_be_object", {"type": type(tx["payload"]).__name__})

    try:
        env = TxEnvelope.from_json(tx)
    except (TypeError, ValueError) as e:
        return TxVerdict.reject("bad_shape", "malformed_envelope", {"error": str(e)})

    rejected = _check_shape(env) or _check_payload(env.payload, limits)
    if rejected is not None:
        return rejected

    if ledger is not None:
        expected = ledger.get_nonce(env.sender.lower()) + 1
        if env.nonce != expected:
            return TxVerdict.reject("bad_nonce", "nonce_must_be_next", {"expected": expected, "got": env.nonce})

    if chain_id is None:
        chain_id = (ledger.chain_id if ledger is not None else 0) or DEFAULT_CHAIN_ID
    if not allow_unsigned and not verify_tx_signature(env.to_json(), chain_id=chain_id):
        return TxVerdict.reject(
            "bad_sig", "signature_verification_failed", {"sender": env.sender, "tx_type": env.tx_type, "chain_id": chain_id}
        )

    return TxVerdict.admit()


__all__ = ["AdmissionLimits", "TxEnvelope", "TxVerdict", "admit_tx"]
