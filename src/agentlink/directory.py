"""
agentlink.directory — Agents and the users who vouch for them.

AgentDirectory: agent wallets known to the platform.
IdentityRegistry: users keyed by wallet, with their recorded identity
verifications. A nullifier can be bound to at most one user.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from eth_account import Account
from eth_utils import encode_hex

from agentlink.caching import VerificationCache
from agentlink.credential import require_address
from agentlink.errors import NullifierReusedError, ValidationError
from agentlink.proofs import (
    IdentityRecord, SelfIDVerification, WorldIDVerification, self_nullifier,
)
from agentlink.verifiers import SELF_ID, WORLD_ID, VerificationOutcome

logger = logging.getLogger(__name__)


# ─── Agents ────────────────────────────────────────────────────────

@dataclass
class AgentRecord:
    address: str
    name: str
    owner_wallet: str
    description: str = ""
    created_at: float = field(default_factory=time.time)
    linked_users: list[str] = field(default_factory=list)

    def public_info(self) -> dict:
        return {
            "address": self.address,
            "name": self.name,
            "description": self.description,
            "ownerWalletAddress": self.owner_wallet,
            "linkedUsers": len(self.linked_users),
            "createdAt": datetime.fromtimestamp(self.created_at, tz=timezone.utc).isoformat(),
        }


class AgentDirectory:
    """In-process agent registry."""

    def __init__(self):
        self._agents: dict[str, AgentRecord] = {}
        self._lock = threading.Lock()

    def register(self, address: str, name: str, owner_wallet: str,
                 description: str = "") -> AgentRecord:
        address = require_address(address, "agent address")
        owner = require_address(owner_wallet, "owner wallet address")
        name = (name or "").strip()
        if not 2 <= len(name) <= 50:
            raise ValidationError("Agent name must be 2 to 50 characters")
        record = AgentRecord(address=address, name=name, owner_wallet=owner,
                             description=(description or "").strip()[:500])
        with self._lock:
            if address.lower() in self._agents:
                raise ValidationError(f"Agent {address} already registered")
            self._agents[address.lower()] = record
        return record

    def create_agent(self, name: str, owner_wallet: str,
                     description: str = "") -> tuple[AgentRecord, str]:
        """Generate a fresh agent wallet. The private key is returned once, not kept."""
        account = Account.create()
        record = self.register(account.address, name, owner_wallet, description)
        logger.info("Agent created", extra={"agent": record.address})
        return record, encode_hex(bytes(account.key))

    def get(self, address: str) -> Optional[AgentRecord]:
        return self._agents.get((address or "").lower())

    def exists(self, address: str) -> bool:
        return self.get(address) is not None

    def list(self) -> list[AgentRecord]:
        return sorted(self._agents.values(), key=lambda a: a.created_at)

    def link_user(self, address: str, user_id: str) -> None:
        with self._lock:
            agent = self._agents.get(address.lower())
            if agent is not None and user_id not in agent.linked_users:
                agent.linked_users.append(user_id)


# ─── Users ─────────────────────────────────────────────────────────

class IdentityRegistry:
    """Users and their identity verifications."""

    def __init__(self, cache: Optional[VerificationCache] = None):
        self._users: dict[str, IdentityRecord] = {}
        self._by_id: dict[str, IdentityRecord] = {}
        self._nullifiers: dict[tuple[str, str], str] = {}
        self._lock = threading.RLock()
        self.cache = cache or VerificationCache()

    def get_by_wallet(self, wallet: str) -> Optional[IdentityRecord]:
        return self._users.get((wallet or "").lower())

    def get(self, user_id: str) -> Optional[IdentityRecord]:
        return self._by_id.get(user_id)

    def ensure_user(self, wallet: str) -> IdentityRecord:
        wallet = require_address(wallet, "wallet address")
        with self._lock:
            record = self._users.get(wallet.lower())
            if record is None:
                record = IdentityRecord(user_id=f"user_{uuid.uuid4().hex[:12]}",
                                        wallet_address=wallet.lower())
                self._users[wallet.lower()] = record
                self._by_id[record.user_id] = record
                logger.info("User created", extra={"user": record.user_id})
            return record

    def add(self, record: IdentityRecord) -> IdentityRecord:
        """Register an existing record (imports, fixtures)."""
        claims = []
        if record.has_world_id:
            claims.append((WORLD_ID, record.world_id.nullifier_hash))
        if record.has_self_id:
            claims.append((SELF_ID, self_nullifier(record.self_id)))
        with self._lock:
            for provider, nullifier in claims:
                owner = self._nullifiers.get((provider, (nullifier or "").lower()))
                if owner is not None and owner != record.user_id:
                    raise NullifierReusedError(
                        "This identity proof has already been used for verification"
                    )
            for provider, nullifier in claims:
                self._claim(provider, nullifier, record.user_id)
            self._users[record.wallet_address.lower()] = record
            self._by_id[record.user_id] = record
        return record

    def check_nullifier(self, provider: str, nullifier: str) -> None:
        """Raise NullifierReusedError if the nullifier is already bound."""
        if not nullifier:
            raise ValidationError("Nullifier is required")
        if self.cache.recent(provider, nullifier) is not None:
            raise NullifierReusedError("This identity proof has already been used for verification")
        if (provider, nullifier.lower()) in self._nullifiers:
            raise NullifierReusedError("This identity proof has already been used for verification")

    def _claim(self, provider: str, nullifier: Optional[str], user_id: str) -> None:
        if not nullifier:
            return
        key = (provider, nullifier.lower())
        owner = self._nullifiers.get(key)
        if owner is not None and owner != user_id:
            raise NullifierReusedError("This identity proof has already been used for verification")
        self._nullifiers[key] = user_id

    def record_world_id(self, wallet: str, outcome: VerificationOutcome,
                        merkle_root: Optional[str] = None) -> IdentityRecord:
        with self._lock:
            self.check_nullifier(WORLD_ID, outcome.nullifier)
            record = self.ensure_user(wallet)
            self._claim(WORLD_ID, outcome.nullifier, record.user_id)
            record.world_id = WorldIDVerification(
                is_verified=True,
                nullifier_hash=outcome.nullifier,
                verification_level=outcome.level,
                verification_date=datetime.fromtimestamp(outcome.timestamp, tz=timezone.utc),
                merkle_root=merkle_root,
            )
        self.cache.remember(WORLD_ID, outcome.nullifier, outcome.to_dict())
        return record

    def record_self_id(self, wallet: str, outcome: VerificationOutcome) -> IdentityRecord:
        with self._lock:
            self.check_nullifier(SELF_ID, outcome.nullifier)
            record = self.ensure_user(wallet)
            self._claim(SELF_ID, outcome.nullifier, record.user_id)
            details = outcome.details or {}
            record.self_id = SelfIDVerification(
                is_verified=True,
                user_identifier=outcome.nullifier,
                verification_date=datetime.fromtimestamp(outcome.timestamp, tz=timezone.utc),
                verification_data={
                    "attestationId": int(outcome.level) if str(outcome.level).isdigit() else 1,
                    "discloseOutput": {"nullifier": outcome.nullifier},
                    "userData": details.get("userData") or {},
                },
            )
        self.cache.remember(SELF_ID, outcome.nullifier, outcome.to_dict())
        return record
