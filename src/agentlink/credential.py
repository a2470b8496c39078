"""
agentlink.credential — The agent-link Verifiable Credential.

An AgentVC binds an agent's chain address to a human proof and a free-text
declaration. Values are immutable; lifecycle changes go through the pure
transition functions below, which return the new value together with the
persistence effects a store has to apply.

    draft → issued → signed → anchored
       └──────┴────────┴─────────┴──→ revoked
"""

import os
import re
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

from eth_utils import is_address, to_checksum_address

from agentlink.errors import ValidationError
from agentlink.proofs import (
    HumanProof,
    IdentityRecord,
    human_proof_from_dict,
    human_proof_from_record,
    human_proof_to_dict,
    self_proof_of,
    world_proof_of,
)

DEFAULT_ISSUER = "agent-id-protocol"
DEFAULT_SCHEMA = "https://agentlink.dev/schemas/agent-link-vc.json"
VC_VERSION = "1.0.0"
MAX_DECLARATION_LENGTH = 1000

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ─── Addresses ─────────────────────────────────────────────────────

def is_chain_address(value) -> bool:
    """0x-prefixed 20-byte hex; mixed case must carry a valid checksum."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value)) and is_address(value)


def require_address(value, field_name: str = "address") -> str:
    """Validate and return the checksummed form."""
    if not is_chain_address(value):
        raise ValidationError(f"Invalid {field_name} format")
    return to_checksum_address(value)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def _timestamp(value, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field_name} must be a unix timestamp") from e


# ─── Value types ───────────────────────────────────────────────────

class VCStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    SIGNED = "signed"
    ANCHORED = "anchored"
    REVOKED = "revoked"


_TRANSITIONS = {
    VCStatus.DRAFT: {VCStatus.ISSUED, VCStatus.REVOKED},
    VCStatus.ISSUED: {VCStatus.SIGNED, VCStatus.REVOKED},
    VCStatus.SIGNED: {VCStatus.ANCHORED, VCStatus.REVOKED},
    VCStatus.ANCHORED: {VCStatus.REVOKED},
    VCStatus.REVOKED: set(),
}


def can_transition(current: VCStatus, target: VCStatus) -> bool:
    return target in _TRANSITIONS[current]


@dataclass(frozen=True)
class Declaration:
    description: str
    created_at: int

    def to_dict(self) -> dict:
        return {"description": self.description, "createdAt": self.created_at}


@dataclass(frozen=True)
class AnchorRecord:
    transaction_hash: str
    block_number: int
    contract_address: str
    anchored_at: int

    def to_dict(self) -> dict:
        return {
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "contractAddress": self.contract_address,
            "anchoredAt": self.anchored_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnchorRecord":
        return cls(
            transaction_hash=data["transactionHash"],
            block_number=int(data["blockNumber"]),
            contract_address=data["contractAddress"],
            anchored_at=int(data["anchoredAt"]),
        )


@dataclass(frozen=True)
class AgentVC:
    vc_id: str
    agent_id: str
    human_proof: HumanProof
    declaration: Declaration
    issuer: str
    schema: str
    issued_at: int
    version: str = VC_VERSION
    status: VCStatus = VCStatus.DRAFT
    signature: Optional[str] = None
    signer_address: Optional[str] = None
    signed_at: Optional[int] = None
    anchor: Optional[AnchorRecord] = None
    revocation_reason: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return bool(self.signature and self.signer_address)

    def to_dict(self) -> dict:
        """The credential document. Lifecycle metadata is not part of it."""
        doc = {
            "vcId": self.vc_id,
            "agentId": self.agent_id,
            "humanProof": human_proof_to_dict(self.human_proof),
            "declaration": self.declaration.to_dict(),
            "issuer": self.issuer,
            "schema": self.schema,
            "issuedAt": self.issued_at,
            "version": self.version,
        }
        if self.signature:
            doc["signature"] = self.signature
            doc["signedAt"] = self.signed_at
            doc["signerAddress"] = self.signer_address
        return doc

    @classmethod
    def from_dict(cls, data: dict, status: Optional[Union[VCStatus, str]] = None) -> "AgentVC":
        errors = validate_vc_document(data)
        if errors:
            raise ValidationError("; ".join(errors))
        decl = data["declaration"]
        if status is None:
            status = VCStatus.SIGNED if data.get("signature") else VCStatus.ISSUED
        issued_at = _timestamp(data["issuedAt"], "issuedAt")
        return cls(
            vc_id=data["vcId"],
            agent_id=data["agentId"],
            human_proof=human_proof_from_dict(data["humanProof"]),
            declaration=Declaration(
                description=decl["description"],
                created_at=_timestamp(decl.get("createdAt", issued_at), "declaration.createdAt"),
            ),
            issuer=data["issuer"],
            schema=data.get("schema") or data.get("schemaUrl") or DEFAULT_SCHEMA,
            issued_at=issued_at,
            version=data.get("version", VC_VERSION),
            status=VCStatus(status),
            signature=data.get("signature"),
            signer_address=data.get("signerAddress"),
            signed_at=data.get("signedAt"),
        )


# ─── Effects ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class SetStatus:
    status: VCStatus
    reason: Optional[str] = None


@dataclass(frozen=True)
class SetSignature:
    signature: str
    signer_address: str
    signed_at: int


@dataclass(frozen=True)
class SetAnchor:
    anchor: AnchorRecord


Effect = Union[SetStatus, SetSignature, SetAnchor]


# ─── Assembly ──────────────────────────────────────────────────────

def generate_vc_id() -> str:
    """Millisecond timestamp plus 64 random bits."""
    return f"vc_{int(time.time() * 1000)}_{os.urandom(8).hex()}"


def assemble_agent_vc(
    agent_id: str,
    record: IdentityRecord,
    declaration: str,
    *,
    issuer: str = DEFAULT_ISSUER,
    schema: str = DEFAULT_SCHEMA,
    now: Optional[int] = None,
) -> AgentVC:
    """Build an unsigned draft credential. Pure apart from id generation."""
    agent = require_address(agent_id, "agent address")
    if not isinstance(declaration, str) or not declaration.strip():
        raise ValidationError("Declaration must not be empty")
    text = declaration.strip()
    if len(text) > MAX_DECLARATION_LENGTH:
        raise ValidationError(f"Declaration exceeds {MAX_DECLARATION_LENGTH} characters")
    if record is None:
        raise ValidationError("Identity record is required")

    proof = human_proof_from_record(record)
    ts = int(now if now is not None else time.time())

    return AgentVC(
        vc_id=generate_vc_id(),
        agent_id=agent,
        human_proof=proof,
        declaration=Declaration(description=text, created_at=ts),
        issuer=issuer,
        schema=schema,
        issued_at=ts,
    )


# ─── Transitions ───────────────────────────────────────────────────

def _move(vc: AgentVC, target: VCStatus) -> None:
    if not can_transition(vc.status, target):
        raise ValidationError(
            f"Cannot move credential {vc.vc_id} from {vc.status.value} to {target.value}"
        )


def issue(vc: AgentVC) -> tuple[AgentVC, list[Effect]]:
    _move(vc, VCStatus.ISSUED)
    return replace(vc, status=VCStatus.ISSUED), [SetStatus(VCStatus.ISSUED)]


def apply_signature(
    vc: AgentVC, signature: str, signer_address: str, signed_at: int,
) -> tuple[AgentVC, list[Effect]]:
    """Attach a signature. Only an issued, unsigned credential accepts one."""
    _move(vc, VCStatus.SIGNED)
    if vc.signature:
        raise ValidationError(f"Credential {vc.vc_id} is already signed")
    signer = require_address(signer_address, "signer address")
    new = replace(
        vc,
        status=VCStatus.SIGNED,
        signature=signature,
        signer_address=signer,
        signed_at=int(signed_at),
    )
    return new, [SetSignature(signature, signer, int(signed_at)), SetStatus(VCStatus.SIGNED)]


def anchor(vc: AgentVC, record: AnchorRecord) -> tuple[AgentVC, list[Effect]]:
    _move(vc, VCStatus.ANCHORED)
    return replace(vc, status=VCStatus.ANCHORED, anchor=record), [
        SetAnchor(record), SetStatus(VCStatus.ANCHORED),
    ]


def revoke(vc: AgentVC, reason: str = "") -> tuple[AgentVC, list[Effect]]:
    _move(vc, VCStatus.REVOKED)
    return replace(vc, status=VCStatus.REVOKED, revocation_reason=reason or None), [
        SetStatus(VCStatus.REVOKED, reason=reason or None),
    ]


def apply_effects(vc: AgentVC, effects: list[Effect]) -> AgentVC:
    """Replay effects onto a stored value (used by stores).

    Each effect is checked against the value it lands on: a signature or an
    anchor is written at most once and every status change must be a legal
    transition. Raises ValidationError otherwise, leaving ``vc`` untouched.
    """
    for eff in effects:
        if isinstance(eff, SetSignature):
            if vc.signature:
                raise ValidationError(f"Credential {vc.vc_id} is already signed")
            vc = replace(vc, signature=eff.signature,
                         signer_address=eff.signer_address, signed_at=eff.signed_at)
        elif isinstance(eff, SetAnchor):
            if vc.anchor is not None:
                raise ValidationError(f"Credential {vc.vc_id} is already anchored")
            vc = replace(vc, anchor=eff.anchor)
        elif isinstance(eff, SetStatus):
            _move(vc, eff.status)
            vc = replace(vc, status=eff.status,
                         revocation_reason=eff.reason if eff.status == VCStatus.REVOKED
                         else vc.revocation_reason)
        else:
            raise TypeError(f"Unknown effect {eff!r}")
    return vc


# ─── Inspection ────────────────────────────────────────────────────

def validate_vc_document(doc: dict) -> list[str]:
    """Structural problems of a credential document; empty means well-formed."""
    errors = []
    if not isinstance(doc, dict):
        return ["Credential must be a JSON object"]
    for key in ("agentId", "humanProof", "declaration", "vcId", "issuer", "issuedAt"):
        if not doc.get(key):
            errors.append(f"Missing {key}")

    if doc.get("agentId") and not is_chain_address(doc["agentId"]):
        errors.append("Invalid agentId format")

    proof = doc.get("humanProof")
    if proof is not None and not (isinstance(proof, dict) and (proof.get("selfId") or proof.get("worldId"))):
        errors.append("At least one identity proof (selfId or worldId) is required")
    elif isinstance(proof, dict):
        for name in ("selfId", "worldId"):
            if proof.get(name) is not None and not isinstance(proof[name], dict):
                errors.append(f"humanProof.{name} must be an object")

    decl = doc.get("declaration")
    if decl is not None and not (isinstance(decl, dict) and decl.get("description")):
        errors.append("Declaration must include description")

    if doc.get("signerAddress") and not is_chain_address(doc["signerAddress"]):
        errors.append("Invalid signerAddress format")
    return errors


def vc_summary(vc: AgentVC, *, vc_hash: Optional[str] = None) -> dict:
    summary = {
        "vcId": vc.vc_id,
        "agentId": vc.agent_id,
        "declaration": vc.declaration.description,
        "createdAt": vc.issued_at,
        "identityProofs": {
            "selfId": self_proof_of(vc.human_proof) is not None,
            "worldId": world_proof_of(vc.human_proof) is not None,
        },
        "isSigned": vc.is_signed,
        "signerAddress": vc.signer_address,
        "isAnchored": vc.anchor is not None,
        "status": vc.status.value,
        "issuer": vc.issuer,
        "version": vc.version,
    }
    if vc_hash is not None:
        summary["vcHash"] = vc_hash
    return summary
