"""
agentlink.canonical — Canonical JSON and the credential hash.

The hash is the signing target of a credential, so it must not depend on the
key order a producer happened to emit, nor on the signature fields added by
signing itself.
"""

import json
import math
from typing import Any

from eth_utils import encode_hex, keccak

from agentlink.errors import ValidationError

# signerAddress is bound by signature recovery, not by the hash
SIGNATURE_FIELDS = ("signature", "signedAt", "signerAddress")


def _key_order(key: str) -> bytes:
    # Code-unit order, same as the JS Array.prototype.sort default
    return key.encode("utf-16-be", "surrogatepass")


def _scalar(value: Any) -> str:
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError("Non-finite numbers cannot be canonicalized")
        if value.is_integer():
            value = int(value)
    return json.dumps(value, ensure_ascii=False)


def canonicalize(obj: Any) -> str:
    """Serialize with keys sorted at every level and arrays left in order."""
    if isinstance(obj, dict):
        parts = []
        for key in sorted(obj, key=lambda k: _key_order(str(k))):
            parts.append(f"{json.dumps(str(key), ensure_ascii=False)}:{canonicalize(obj[key])}")
        return "{" + ",".join(parts) + "}"
    if isinstance(obj, (list, tuple)):
        return "[" + ",".join(canonicalize(item) for item in obj) + "]"
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return _scalar(obj)
    raise ValidationError(f"Cannot canonicalize value of type {type(obj).__name__}")


def strip_signature(vc: dict) -> dict:
    """Copy of a credential document without the fields signing adds."""
    return {k: v for k, v in vc.items() if k not in SIGNATURE_FIELDS}


def canonical_bytes(vc: dict) -> bytes:
    return canonicalize(strip_signature(vc)).encode("utf-8")


def vc_hash_bytes(vc: dict) -> bytes:
    return keccak(canonical_bytes(vc))


def vc_hash(vc: dict) -> str:
    """0x-prefixed keccak256 of the canonical unsigned document."""
    return encode_hex(vc_hash_bytes(vc))
