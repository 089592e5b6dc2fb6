from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from guildhall.runtime.errors import GuildError


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    reason: str
    details: Dict[str, Any]

    def body(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "reason": self.reason, "details": dict(self.details)}}

    @staticmethod
    def bad_request(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, reason, details or {})

    @staticmethod
    def forbidden(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, reason, details or {})

    @staticmethod
    def not_found(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, reason, details or {})

    @staticmethod
    def conflict(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(409, code, reason, details or {})

    @staticmethod
    def internal(code: str, reason: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, reason, details or {})


# Domain error code -> HTTP status. Anything unlisted is a 400.
_STATUS_BY_CODE: Dict[str, int] = {
    "access_denied": 403,
    "forbidden": 403,
    "not_found": 404,
    "nonce_replayed": 409,
    "already_member": 409,
    "already_initialized": 409,
    "reconciliation_not_allowed": 409,
    "tx_too_large": 413,
}


def status_for_code(code: str) -> int:
    return _STATUS_BY_CODE.get(str(code or ""), 400)


def from_guild_error(err: GuildError) -> ApiError:
    return ApiError(status_for_code(err.code), err.code, err.reason, dict(err.details or {}))


def from_error_json(err: Any) -> ApiError:
    """Build an ApiError from the {code, reason, details} dicts the executor returns."""
    e = err if isinstance(err, dict) else {}
    code = str(e.get("code") or "rejected")
    details = e.get("details") if isinstance(e.get("details"), dict) else {}
    return ApiError(status_for_code(code), code, str(e.get("reason") or ""), details)
