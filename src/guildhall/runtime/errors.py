from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class GuildError(Exception):
    """Canonical error type for every rejected transition.

    `code` is the stable taxonomy name, `reason` a short machine-readable
    detail and `details` optional context for the caller.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> dict:
        return {"code": self.code, "reason": self.reason, "details": self.details}


class SignatureInvalid(GuildError):
    def __init__(self, reason: str = "invalid_sig", details: Any | None = None) -> None:
        super().__init__("signature_invalid", reason, details)


class NonceReplayed(GuildError):
    def __init__(self, reason: str = "already_redeemed", details: Any | None = None) -> None:
        super().__init__("nonce_replayed", reason, details)


class AlreadyMember(GuildError):
    def __init__(self, reason: str = "already_member", details: Any | None = None) -> None:
        super().__init__("already_member", reason, details)


class BelowMinimum(GuildError):
    def __init__(self, reason: str = "not_sufficient_funds", details: Any | None = None) -> None:
        super().__init__("below_minimum", reason, details)


class LimitExceeded(GuildError):
    def __init__(self, reason: str = "too_much_funds", details: Any | None = None) -> None:
        super().__init__("limit_exceeded", reason, details)


class ReconciliationNotAllowed(GuildError):
    def __init__(self, reason: str = "update_not_allowed", details: Any | None = None) -> None:
        super().__init__("reconciliation_not_allowed", reason, details)


class AccessDenied(GuildError):
    def __init__(self, reason: str = "access_denied", details: Any | None = None) -> None:
        super().__init__("access_denied", reason, details)


class NotFound(GuildError):
    def __init__(self, reason: str = "not_found", details: Any | None = None) -> None:
        super().__init__("not_found", reason, details)


class AlreadyInitialized(GuildError):
    def __init__(self, reason: str = "already_initialized", details: Any | None = None) -> None:
        super().__init__("already_initialized", reason, details)


class UnsupportedDirectValue(GuildError):
    def __init__(self, reason: str = "value_not_accepted", details: Any | None = None) -> None:
        super().__init__("unsupported_direct_value", reason, details)


# Host-level failures: malformed envelopes and the asset layer.


class InvalidRequest(GuildError):
    def __init__(self, reason: str = "invalid_payload", details: Any | None = None) -> None:
        super().__init__("invalid_request", reason, details)


class InsufficientBalance(GuildError):
    def __init__(self, reason: str = "insufficient_balance", details: Any | None = None) -> None:
        super().__init__("insufficient_balance", reason, details)


__all__ = [
    "GuildError",
    "SignatureInvalid",
    "NonceReplayed",
    "AlreadyMember",
    "BelowMinimum",
    "LimitExceeded",
    "ReconciliationNotAllowed",
    "AccessDenied",
    "NotFound",
    "AlreadyInitialized",
    "UnsupportedDirectValue",
    "InvalidRequest",
    "InsufficientBalance",
]
