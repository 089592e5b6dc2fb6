# src/guildhall/util/address.py
from __future__ import annotations

"""Address validation helpers.

Identities are 20-byte addresses written as "0x" + 40 hex chars. We accept
mixed case on input and always store the lowercase form so that dict keys in
the ledger state compare equal.

Key-backed identities are derived from secp256k1 public keys; everything else
(organizations, collections, contract instances) may use any valid address,
e.g. one derived from a label with address_from_label().
"""

import hashlib
import re
from dataclasses import dataclass

from guildhall.ledger.constants import ADDRESS_BYTES


_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class AddressValidation:
    ok: bool
    reason: str
    address: str


def validate_address(addr: object) -> AddressValidation:
    if not isinstance(addr, str):
        return AddressValidation(False, "not_a_string", "")
    a = addr.strip()
    if not a:
        return AddressValidation(False, "missing_address", "")
    if not _ADDRESS_RE.match(a):
        return AddressValidation(False, "malformed_address", a)
    return AddressValidation(True, "ok", a.lower())


def normalize_address(addr: object) -> str:
    """Return the canonical lowercase address or raise ValueError."""
    v = validate_address(addr)
    if not v.ok:
        raise ValueError(f"invalid address ({v.reason}): {addr!r}")
    return v.address


def address_from_pubkey(pubkey_uncompressed: bytes) -> str:
    """Derive the identity of a secp256k1 public key.

    Input is the 65-byte SEC1 uncompressed encoding (0x04 || X || Y).
    """
    if len(pubkey_uncompressed) != 65 or pubkey_uncompressed[0] != 0x04:
        raise ValueError("expected 65-byte uncompressed secp256k1 public key")
    digest = hashlib.sha256(pubkey_uncompressed[1:]).digest()
    return "0x" + digest[-ADDRESS_BYTES:].hex()


def address_from_label(label: str) -> str:
    """Deterministic non-key address for named principals (collections, orgs)."""
    digest = hashlib.sha256(("guildhall-address:" + (label or "")).encode("utf-8")).digest()
    return "0x" + digest[:ADDRESS_BYTES].hex()
