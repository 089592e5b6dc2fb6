from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

Json = Dict[str, Any]


def _clean_str(v: Any) -> str:
    return str(v or "").strip()


@dataclass(frozen=True)
class TxReject:
    code: str
    reason: str
    details: Optional[Json] = None

    def to_json(self) -> Json:
        return {"code": self.code, "reason": self.reason, "details": dict(self.details or {})}


@dataclass(frozen=True)
class TxVerdict:
    """Outcome of admission. Unpacks as `(ok, reject)` where reject is None on success."""

    rejection: Optional[TxReject] = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @property
    def code(self) -> str:
        return self.rejection.code if self.rejection else "ok"

    @property
    def reason(self) -> str:
        return self.rejection.reason if self.rejection else "admitted"

    @property
    def details(self) -> Optional[Json]:
        return self.rejection.details if self.rejection else None

    def __iter__(self) -> Iterator[Any]:
        yield self.ok
        yield self.rejection

    @classmethod
    def admit(cls) -> "TxVerdict":
        return cls()

    @classmethod
    def reject(cls, code: str, reason: str, details: Optional[Json] = None) -> "TxVerdict":
        return cls(TxReject(code, reason, details))


@dataclass(frozen=True)
class TxEnvelope:
    """A single state-changing call.

    `sender` is the calling principal; `value` is native currency attached to
    the call (only payable tx types accept a non-zero value).
    """

    tx_type: str
    sender: str
    nonce: int
    payload: Json = field(default_factory=dict)
    value: int = 0
    sig: str = ""
    system: bool = False

    @classmethod
    def from_json(cls, j: Any) -> "TxEnvelope":
        """Coerce a submitted mapping. Raises TypeError/ValueError on unusable fields."""
        if isinstance(j, TxEnvelope):
            return j
        raw = j if isinstance(j, dict) else dict(j)
        return cls(
            tx_type=_clean_str(raw.get("tx_type")).upper(),
            sender=_clean_str(raw.get("sender")),
            nonce=int(raw.get("nonce") or 0),
            payload=dict(raw.get("payload") or {}),
            value=int(raw.get("value") or 0),
            sig=_clean_str(raw.get("sig")),
            system=bool(raw.get("system", False)),
        )

    def signing_body(self) -> Json:
        """Envelope fields the sender signs over; crypto.sig.tx_digest adds the chain id."""
        return {
            "tx_type": self.tx_type,
            "sender": self.sender,
            "nonce": self.nonce,
            "payload": self.payload,
            "value": self.value,
        }

    def to_json(self) -> Json:
        out = self.signing_body()
        out["sig"] = self.sig
        out["system"] = self.system
        return out
