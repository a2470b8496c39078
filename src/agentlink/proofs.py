"""
agentlink.proofs — Identity verification records and the human proof union.

A user's stored verifications (World ID, Self Protocol) are trusted input once
``is_verified`` is set. A credential carries only the minimal fields of those
verifications, as one of three proof shapes:

    SelfProof | WorldProof | DualProof

There is no empty shape, so "at least one proof" cannot be violated once a
HumanProof exists.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from agentlink.errors import ValidationError


DEFAULT_ATTESTATION_ID = 1  # passport
VERIFICATION_LEVELS = ("orb", "device")


def to_unix(value: Any) -> int:
    """Coerce a datetime / ISO string / epoch number into unix seconds."""
    if value is None:
        return int(datetime.now(timezone.utc).timestamp())
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, (int, float)):
        # Millisecond epochs show up from JS producers
        return int(value / 1000) if value > 10_000_000_000 else int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_unix(datetime.fromisoformat(text))
    raise ValidationError(f"Unsupported timestamp value: {value!r}")


# ─── Stored verifications ──────────────────────────────────────────

@dataclass
class WorldIDVerification:
    is_verified: bool = False
    nullifier_hash: Optional[str] = None
    verification_level: Optional[str] = None
    verification_date: Optional[datetime] = None
    merkle_root: Optional[str] = None
    proof: Optional[str] = None
    action: str = "poh"

    @classmethod
    def from_dict(cls, data: dict) -> "WorldIDVerification":
        return cls(
            is_verified=bool(data.get("isVerified", False)),
            nullifier_hash=data.get("nullifierHash"),
            verification_level=data.get("verificationLevel"),
            verification_date=_parse_date(data.get("verificationDate")),
            merkle_root=data.get("merkleRoot"),
            proof=data.get("proof"),
            action=data.get("actionId", "poh"),
        )


@dataclass
class SelfIDVerification:
    is_verified: bool = False
    user_identifier: Optional[str] = None
    verification_date: Optional[datetime] = None
    verification_data: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "SelfIDVerification":
        return cls(
            is_verified=bool(data.get("isVerified", False)),
            user_identifier=data.get("userIdentifier"),
            verification_date=_parse_date(data.get("verificationDate")),
            verification_data=dict(data.get("verificationData") or {}),
        )


@dataclass
class IdentityRecord:
    """A user and the identity verifications recorded for them."""
    user_id: str
    wallet_address: str
    world_id: Optional[WorldIDVerification] = None
    self_id: Optional[SelfIDVerification] = None

    @property
    def has_world_id(self) -> bool:
        return self.world_id is not None and self.world_id.is_verified

    @property
    def has_self_id(self) -> bool:
        return self.self_id is not None and self.self_id.is_verified

    @property
    def is_human_verified(self) -> bool:
        return self.has_world_id or self.has_self_id

    @classmethod
    def from_dict(cls, data: dict) -> "IdentityRecord":
        """Build from a stored user document (camelCase keys)."""
        world = data.get("worldIdVerification")
        self_ = data.get("selfIdVerification")
        return cls(
            user_id=str(data.get("id") or data.get("_id") or data["walletAddress"].lower()),
            wallet_address=data["walletAddress"],
            world_id=WorldIDVerification.from_dict(world) if world else None,
            self_id=SelfIDVerification.from_dict(self_) if self_ else None,
        )

    def public_info(self) -> dict:
        info = {
            "id": self.user_id,
            "walletAddress": self.wallet_address,
            "worldIdVerification": {"isVerified": self.has_world_id},
            "selfIdVerification": {"isVerified": self.has_self_id},
        }
        if self.world_id is not None:
            info["worldIdVerification"].update({
                "verificationLevel": self.world_id.verification_level,
                "verificationDate": _iso(self.world_id.verification_date),
            })
        if self.self_id is not None:
            info["selfIdVerification"]["verificationDate"] = _iso(self.self_id.verification_date)
        return info


def _parse_date(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(to_unix(value), tz=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ─── Human proof union ─────────────────────────────────────────────

@dataclass(frozen=True)
class SelfProof:
    attestation_id: int
    nullifier: str
    verified_at: int

    def to_dict(self) -> dict:
        return {
            "attestationId": self.attestation_id,
            "nullifier": self.nullifier,
            "verifiedAt": self.verified_at,
        }


@dataclass(frozen=True)
class WorldProof:
    nullifier_hash: str
    verification_level: str
    verified_at: int

    def to_dict(self) -> dict:
        return {
            "nullifierHash": self.nullifier_hash,
            "verificationLevel": self.verification_level,
            "verifiedAt": self.verified_at,
        }


@dataclass(frozen=True)
class DualProof:
    self_id: SelfProof
    world_id: WorldProof


HumanProof = Union[SelfProof, WorldProof, DualProof]


def self_proof_of(proof: HumanProof) -> Optional[SelfProof]:
    if isinstance(proof, DualProof):
        return proof.self_id
    return proof if isinstance(proof, SelfProof) else None


def world_proof_of(proof: HumanProof) -> Optional[WorldProof]:
    if isinstance(proof, DualProof):
        return proof.world_id
    return proof if isinstance(proof, WorldProof) else None


def combine(self_proof: Optional[SelfProof], world_proof: Optional[WorldProof]) -> HumanProof:
    """Pick the union member for the proofs present. Raises if none."""
    if self_proof and world_proof:
        return DualProof(self_id=self_proof, world_id=world_proof)
    if self_proof:
        return self_proof
    if world_proof:
        return world_proof
    raise ValidationError(
        "No valid identity proofs found. User must have at least Self ID or World ID verification"
    )


def self_nullifier(sid: SelfIDVerification) -> Optional[str]:
    """The nullifier a Self verification contributes to a credential."""
    data = sid.verification_data or {}
    nullifier = (
        (data.get("discloseOutput") or {}).get("nullifier")
        or (data.get("userData") or {}).get("userIdentifier")
        or sid.user_identifier
    )
    return str(nullifier) if nullifier else None


def human_proof_from_record(record: IdentityRecord) -> HumanProof:
    """Copy the minimal proof fields out of a user's verifications."""
    self_proof = None
    if record.has_self_id:
        sid = record.self_id
        data = sid.verification_data or {}
        nullifier = self_nullifier(sid)
        if not nullifier:
            raise ValidationError("Self ID verification has no nullifier")
        self_proof = SelfProof(
            attestation_id=int(data.get("attestationId") or DEFAULT_ATTESTATION_ID),
            nullifier=nullifier,
            verified_at=to_unix(sid.verification_date),
        )

    world_proof = None
    if record.has_world_id:
        wid = record.world_id
        if not wid.nullifier_hash:
            raise ValidationError("World ID verification has no nullifier hash")
        world_proof = WorldProof(
            nullifier_hash=wid.nullifier_hash,
            verification_level=wid.verification_level or "orb",
            verified_at=to_unix(wid.verification_date),
        )

    return combine(self_proof, world_proof)


def human_proof_to_dict(proof: HumanProof) -> dict:
    out = {}
    sp = self_proof_of(proof)
    wp = world_proof_of(proof)
    if sp is not None:
        out["selfId"] = sp.to_dict()
    if wp is not None:
        out["worldId"] = wp.to_dict()
    return out


def human_proof_from_dict(data: Optional[dict]) -> HumanProof:
    data = data or {}
    if not isinstance(data, dict):
        raise ValidationError("humanProof must be an object")
    sp = data.get("selfId")
    wp = data.get("worldId")
    for name, part in (("selfId", sp), ("worldId", wp)):
        if part is not None and not isinstance(part, dict):
            raise ValidationError(f"humanProof.{name} must be an object")
    try:
        self_proof = SelfProof(
            attestation_id=int(sp.get("attestationId", DEFAULT_ATTESTATION_ID)),
            nullifier=str(sp["nullifier"]),
            verified_at=int(sp["verifiedAt"]),
        ) if sp else None
        world_proof = WorldProof(
            nullifier_hash=str(wp["nullifierHash"]),
            verification_level=str(wp["verificationLevel"]),
            verified_at=int(wp["verifiedAt"]),
        ) if wp else None
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed humanProof: {e}") from e
    return combine(self_proof, world_proof)
