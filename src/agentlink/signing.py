"""
agentlink.signing — Credential signing and signature verification.

The signing target is the 32-byte credential hash, signed as a personal
message (EIP-191 ``\\x19Ethereum Signed Message:\\n32`` prefix). Verification
must therefore recover from the same message encoding, not from the raw hash.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import encode_hex

from agentlink.canonical import vc_hash_bytes
from agentlink.credential import AgentVC, Effect, VCStatus, apply_signature, same_address
from agentlink.errors import SigningError, ValidationError

logger = logging.getLogger(__name__)


def _hex_signature(sig: Union[str, bytes]) -> str:
    if isinstance(sig, (bytes, bytearray)):
        return encode_hex(bytes(sig))
    return sig if sig.startswith("0x") else "0x" + sig


# ─── Signers ───────────────────────────────────────────────────────

class MessageSigner(ABC):
    """Anything that can sign personal messages for a chain address."""

    @property
    @abstractmethod
    def address(self) -> str: ...

    @abstractmethod
    def sign_message(self, message: bytes) -> str:
        """Return the 0x-hex signature over ``message`` with the personal prefix."""


class LocalSigner(MessageSigner):
    """secp256k1 key held in process (the DApp signer)."""

    def __init__(self, account=None):
        self._account = account or Account.create()

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return _hex_signature(bytes(signed.signature))

    @classmethod
    def generate(cls) -> "LocalSigner":
        return cls()

    @classmethod
    def from_private_key(cls, hex_key: str) -> "LocalSigner":
        try:
            return cls(Account.from_key(hex_key))
        except Exception as e:
            raise SigningError("Invalid signing key") from e

    def export_keys(self) -> dict:
        return {
            "address": self.address,
            "private_key": encode_hex(bytes(self._account.key)),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

    @classmethod
    def load(cls, filepath: str) -> "LocalSigner":
        with open(filepath) as f:
            data = json.load(f)
        return cls.from_private_key(data["private_key"])

    def save(self, filepath: str):
        os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
        with open(filepath, "w") as f:
            json.dump(self.export_keys(), f, indent=2)
        os.chmod(filepath, 0o600)


# ─── Sign ──────────────────────────────────────────────────────────

def sign_vc(
    vc: AgentVC,
    signer: Optional[MessageSigner],
    *,
    now: Optional[int] = None,
) -> tuple[AgentVC, list[Effect]]:
    """Sign an issued credential.

    Fails atomically: on any signer failure a SigningError carrying the
    untouched issued credential is raised.
    """
    if vc.status != VCStatus.ISSUED:
        raise ValidationError(f"Only issued credentials can be signed (status: {vc.status.value})")
    if signer is None:
        raise SigningError("No signing key configured", vc=vc)

    digest = vc_hash_bytes(vc.to_dict())
    try:
        signature = _hex_signature(signer.sign_message(digest))
        address = signer.address
    except Exception as e:
        logger.warning("Signer failed for %s: %s", vc.vc_id, type(e).__name__)
        raise SigningError("Failed to sign credential", vc=vc) from e

    recovered = recover_signer(digest, signature)
    if not same_address(recovered, address):
        raise SigningError("Signer returned a signature for a different address", vc=vc)

    signed_at = int(now if now is not None else time.time())
    return apply_signature(vc, signature, address, signed_at)


# ─── Verify ────────────────────────────────────────────────────────

class VerificationStatus(str, Enum):
    UNSIGNED = "unsigned"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    vc_hash: str
    signer_address: Optional[str] = None
    recovered_address: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status == VerificationStatus.VALID

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "isValid": self.is_valid,
            "vcHash": self.vc_hash,
            "signerAddress": self.signer_address,
            "recoveredAddress": self.recovered_address,
        }


def recover_signer(digest: bytes, signature: str) -> Optional[str]:
    """Address that signed ``digest`` as a personal message, or None."""
    try:
        return Account.recover_message(encode_defunct(primitive=digest), signature=signature)
    except Exception as e:
        logger.debug("Signature recovery failed: %s", type(e).__name__)
        return None


def verify_vc(vc: Union[AgentVC, dict]) -> VerificationResult:
    """Check a credential's signature against its claimed signer.

    Missing signature data is UNSIGNED, a mismatch or malformed signature is
    INVALID. Never raises for a structurally valid document.
    """
    doc = vc.to_dict() if isinstance(vc, AgentVC) else dict(vc)
    digest = vc_hash_bytes(doc)
    vc_hash = encode_hex(digest)
    signature = doc.get("signature")
    claimed = doc.get("signerAddress")

    if not signature or not claimed:
        return VerificationResult(VerificationStatus.UNSIGNED, vc_hash, signer_address=claimed)

    recovered = recover_signer(digest, signature)
    status = VerificationStatus.VALID if same_address(recovered, claimed) else VerificationStatus.INVALID
    return VerificationResult(status, vc_hash, signer_address=claimed, recovered_address=recovered)
