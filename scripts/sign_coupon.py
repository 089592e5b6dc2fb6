#!/usr/bin/env python3

"""Off-line KYC coupon tool.

Computes the coupon digest for (organization, member, nonce) under a given
onboarding deployment and, when a key is supplied, signs it.

Usage:
  python3 scripts/sign_coupon.py --chain-id 1337 \
      --onboarding 0x... --organization 0x... --member 0x... --nonce 1 \
      [--key-file signer.key | --key-env GUILDHALL_KYC_SIGNER_KEY]

Prints one JSON object: {digest, signature?, signer?, coupon}.
The private key is never accepted on the command line.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional

from guildhall.crypto.coupon import Coupon, hash_coupon_message, privkey_to_address, sign_digest
from guildhall.ledger.constants import COUPON_KIND_KYC
from guildhall.util.address import normalize_address


def _read_key(args: argparse.Namespace) -> Optional[str]:
    if args.key_file:
        return Path(args.key_file).read_text(encoding="utf-8").strip()
    if args.key_env:
        v = (os.environ.get(args.key_env) or "").strip()
        if not v:
            raise SystemExit(f"environment variable {args.key_env} is empty")
        return v
    return None


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Hash and sign guildhall KYC coupons.")
    p.add_argument("--chain-id", type=int, required=True)
    p.add_argument("--onboarding", required=True, help="onboarding ledger address (verifying contract)")
    p.add_argument("--organization", required=True)
    p.add_argument("--member", required=True)
    p.add_argument("--nonce", type=int, required=True)
    p.add_argument("--kind", default=COUPON_KIND_KYC)
    p.add_argument("--key-file", default="", help="file holding the signer's hex private key")
    p.add_argument("--key-env", default="", help="environment variable holding the signer's hex private key")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = _parser().parse_args(argv)

    try:
        org = normalize_address(args.organization)
        member = normalize_address(args.member)
        onboarding = normalize_address(args.onboarding)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    if args.nonce <= 0:
        print("error: nonce must be positive", file=sys.stderr)
        return 2

    coupon = Coupon(member=member, nonce=int(args.nonce), kind=str(args.kind))
    digest = hash_coupon_message(
        organization=org,
        verifying_contract=onboarding,
        chain_id=int(args.chain_id),
        coupon=coupon,
    )

    out = {"digest": "0x" + digest.hex(), "coupon": coupon.to_json(), "organization": org}
    key = _read_key(args)
    if key:
        out["signature"] = sign_digest(digest=digest, privkey=key)
        out["signer"] = privkey_to_address(key)

    print(json.dumps(out, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
