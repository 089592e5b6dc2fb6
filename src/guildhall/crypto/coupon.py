# src/guildhall/crypto/coupon.py
from __future__ import annotations

"""KYC coupon hashing and signer recovery.

A coupon authorizes exactly one onboarding of one member at one nonce. The
KYC operator signs the coupon digest off-line; the onboarding ledger recomputes
the digest and recovers the signer from the signature.

Digest layout (typed structured hashing, H = sha256):

  domain = H( H(DOMAIN_TYPE) || H(name) || H(version) || u256(chain_id)
              || addr(organization) || addr(verifying_contract) )
  struct = H( H(COUPON_TYPE) || H(kind) || addr(member) || u256(nonce) )
  digest = H( 0x19 0x01 || domain || struct )

Every input is mixed in, so a signature cannot be replayed against another
organization, another deployment of the onboarding contract, or another chain.

Everything in this module is pure.
"""

import hashlib
from dataclasses import dataclass
from typing import Union

from coincurve import PrivateKey, PublicKey

from guildhall.ledger.constants import COUPON_KIND_KYC
from guildhall.runtime.errors import SignatureInvalid
from guildhall.util.address import address_from_pubkey, normalize_address

DOMAIN_NAME = "guildhall-coupon"
DOMAIN_VERSION = "1"

DOMAIN_TYPE = (
    "Domain(string name,string version,uint256 chainId,address organization,address verifyingContract)"
)
COUPON_TYPE = "Coupon(string kind,address member,uint256 nonce)"

SIGNATURE_LENGTH = 65

# secp256k1 group order; signatures with s > n/2 are malleable duplicates.
_SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_SECP256K1_HALF_N = _SECP256K1_N // 2

_UINT256_MAX = 2**256 - 1


@dataclass(frozen=True)
class Coupon:
    member: str
    nonce: int
    kind: str = COUPON_KIND_KYC

    def to_json(self) -> dict:
        return {"kind": self.kind, "member": self.member, "nonce": int(self.nonce)}


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def _u256(n: int) -> bytes:
    v = int(n)
    if v < 0 or v > _UINT256_MAX:
        raise ValueError(f"uint256 out of range: {n}")
    return v.to_bytes(32, "big")


def _addr32(addr: str) -> bytes:
    raw = bytes.fromhex(normalize_address(addr)[2:])
    return b"\x00" * 12 + raw


def domain_separator(*, organization: str, verifying_contract: str, chain_id: int) -> bytes:
    return _sha256(
        _sha256(DOMAIN_TYPE.encode("utf-8"))
        + _sha256(DOMAIN_NAME.encode("utf-8"))
        + _sha256(DOMAIN_VERSION.encode("utf-8"))
        + _u256(chain_id)
        + _addr32(organization)
        + _addr32(verifying_contract)
    )


def coupon_struct_hash(coupon: Coupon) -> bytes:
    return _sha256(
        _sha256(COUPON_TYPE.encode("utf-8"))
        + _sha256(str(coupon.kind).encode("utf-8"))
        + _addr32(coupon.member)
        + _u256(coupon.nonce)
    )


def hash_coupon_message(
    *,
    organization: str,
    verifying_contract: str,
    chain_id: int,
    coupon: Coupon,
) -> bytes:
    """Return the 32-byte digest a KYC signer signs for `coupon`."""
    dom = domain_separator(organization=organization, verifying_contract=verifying_contract, chain_id=chain_id)
    return _sha256(b"\x19\x01" + dom + coupon_struct_hash(coupon))


def _decode_signature(signature: Union[str, bytes]) -> bytes:
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    if not isinstance(signature, str):
        raise SignatureInvalid("malformed_signature", {"type": type(signature).__name__})
    s = signature.strip()
    if s.startswith(("0x", "0X")):
        s = s[2:]
    try:
        return bytes.fromhex(s)
    except ValueError:
        raise SignatureInvalid("malformed_signature", {"encoding": "not_hex"}) from None


def recover_signer(digest: bytes, signature: Union[str, bytes]) -> str:
    """Recover the signing identity of a 65-byte r||s||v signature.

    v may be 0/1 or 27/28. Anything else (length, recovery id, high-s,
    points that do not recover) raises SignatureInvalid.
    """
    if len(digest) != 32:
        raise SignatureInvalid("bad_digest_length", {"length": len(digest)})

    sig = _decode_signature(signature)
    if len(sig) != SIGNATURE_LENGTH:
        raise SignatureInvalid("bad_signature_length", {"length": len(sig)})

    v = sig[64]
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        raise SignatureInvalid("bad_recovery_id", {"v": sig[64]})

    s_val = int.from_bytes(sig[32:64], "big")
    if s_val > _SECP256K1_HALF_N:
        raise SignatureInvalid("malleable_signature")

    try:
        pub = PublicKey.from_signature_and_message(sig[:64] + bytes([v]), digest, hasher=None)
    except (ValueError, TypeError):
        raise SignatureInvalid("unrecoverable_signature") from None

    return address_from_pubkey(pub.format(compressed=False))


def sign_digest(*, digest: bytes, privkey: Union[str, bytes]) -> str:
    """Sign a 32-byte digest; returns 0x-prefixed r||s||v hex with v in {27, 28}."""
    if len(digest) != 32:
        raise ValueError("digest must be 32 bytes")
    if isinstance(privkey, str):
        k = privkey.strip()
        if k.startswith(("0x", "0X")):
            k = k[2:]
        key_b = bytes.fromhex(k)
    else:
        key_b = bytes(privkey)
    if len(key_b) != 32:
        raise ValueError("secp256k1 private key must be 32 bytes")

    sig = PrivateKey(key_b).sign_recoverable(digest, hasher=None)
    return "0x" + (sig[:64] + bytes([sig[64] + 27])).hex()


def sign_coupon(
    *,
    privkey: Union[str, bytes],
    organization: str,
    verifying_contract: str,
    chain_id: int,
    coupon: Coupon,
) -> str:
    digest = hash_coupon_message(
        organization=organization,
        verifying_contract=verifying_contract,
        chain_id=chain_id,
        coupon=coupon,
    )
    return sign_digest(digest=digest, privkey=privkey)


def privkey_to_address(privkey: Union[str, bytes]) -> str:
    if isinstance(privkey, str):
        k = privkey.strip()
        if k.startswith(("0x", "0X")):
            k = k[2:]
        key_b = bytes.fromhex(k)
    else:
        key_b = bytes(privkey)
    return address_from_pubkey(PrivateKey(key_b).public_key.format(compressed=False))
