"""
agentlink.linking — Linking an agent to a verified human.

    NoLink → Linking → Linked

``prepare`` validates and assembles an issued credential without touching
the store; ``complete`` signs it and persists it exactly once, fully formed.
A signing failure leaves nothing in the store and hands back the issued
credential so the sign step can be retried on its own.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from agentlink.canonical import vc_hash
from agentlink.credential import (
    DEFAULT_ISSUER,
    DEFAULT_SCHEMA,
    AgentVC,
    AnchorRecord,
    anchor,
    assemble_agent_vc,
    issue,
    require_address,
    revoke,
    vc_summary,
)
from agentlink.directory import AgentDirectory, AgentRecord, IdentityRegistry
from agentlink.errors import DuplicateLinkError, NotFoundError, ValidationError
from agentlink.proofs import IdentityRecord
from agentlink.signing import MessageSigner, VerificationResult, sign_vc, verify_vc
from agentlink.store import StoredVC, VCStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkResult:
    vc: AgentVC
    vc_hash: str
    agent: AgentRecord
    user: IdentityRecord

    def to_dict(self) -> dict:
        return {
            "vc": vc_summary(self.vc),
            "document": self.vc.to_dict(),
            "vcHash": self.vc_hash,
            "agent": self.agent.public_info(),
            "user": self.user.public_info(),
        }


class AgentLinker:
    """Coordinates assembly, signing and persistence of agent-link credentials."""

    def __init__(self, store: VCStore, directory: AgentDirectory,
                 identities: IdentityRegistry, signer: Optional[MessageSigner],
                 *, issuer: str = DEFAULT_ISSUER, schema: str = DEFAULT_SCHEMA):
        self.store = store
        self.directory = directory
        self.identities = identities
        self.signer = signer
        self.issuer = issuer
        self.schema = schema

    # ── Link ──

    def _resolve(self, agent_id: str, wallet_address: str) -> tuple[AgentRecord, IdentityRecord]:
        require_address(agent_id, "agent address")
        require_address(wallet_address, "wallet address")
        agent = self.directory.get(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        user = self.identities.get_by_wallet(wallet_address)
        if user is None:
            raise NotFoundError("User not found. Please complete identity verification first.")
        return agent, user

    def prepare(self, agent_id: str, wallet_address: str, declaration: str) -> AgentVC:
        """Validate the request and build an issued, unsigned credential."""
        agent, user = self._resolve(agent_id, wallet_address)
        if not user.is_human_verified:
            raise ValidationError(
                "User must have at least one identity verification (Self ID or World ID)"
            )
        existing = self.store.find_by_agent_and_user(agent.address, user.user_id)
        if existing is not None:
            raise DuplicateLinkError(agent.address, user.user_id, existing.vc.vc_id)

        draft = assemble_agent_vc(agent.address, user, declaration,
                                  issuer=self.issuer, schema=self.schema)
        issued, _ = issue(draft)
        return issued

    def complete(self, vc: AgentVC, wallet_address: str) -> LinkResult:
        """Sign an issued credential and persist it."""
        agent, user = self._resolve(vc.agent_id, wallet_address)
        signed, _ = sign_vc(vc, self.signer)
        digest = vc_hash(signed.to_dict())
        self.store.create(signed, user_id=user.user_id, vc_hash=digest)
        self.directory.link_user(agent.address, user.user_id)
        logger.info("Agent linked", extra={"agent": agent.address, "vc_id": signed.vc_id})
        return LinkResult(vc=signed, vc_hash=digest, agent=agent, user=user)

    def link(self, agent_id: str, wallet_address: str, declaration: str) -> LinkResult:
        return self.complete(self.prepare(agent_id, wallet_address, declaration), wallet_address)

    # ── Queries ──

    def _get(self, vc_id: str) -> StoredVC:
        record = self.store.get(vc_id)
        if record is None:
            raise NotFoundError("VC not found")
        return record

    def latest_for_agent(self, agent_id: str) -> StoredVC:
        require_address(agent_id, "agent address")
        records = self.store.find_by_agent(agent_id)
        if not records:
            raise NotFoundError("No VCs found for this agent")
        return records[0]

    def for_wallet(self, wallet_address: str) -> list[StoredVC]:
        """Credentials vouched for by a user, or signed by the wallet itself."""
        require_address(wallet_address, "wallet address")
        found = {r.vc.vc_id: r for r in self.store.find_by_signer(wallet_address)}
        user = self.identities.get_by_wallet(wallet_address)
        if user is not None:
            found.update({r.vc.vc_id: r for r in self.store.find_by_user(user.user_id)})
        return sorted(found.values(), key=lambda r: r.created_at, reverse=True)

    def verify(self, vc_id: str) -> tuple[StoredVC, VerificationResult]:
        record = self._get(vc_id)
        return record, verify_vc(record.vc)

    # ── Lifecycle ──

    def anchor(self, vc_id: str, transaction_hash: str, block_number: int,
               contract_address: str, anchored_at: int) -> StoredVC:
        record = AnchorRecord(
            transaction_hash=transaction_hash,
            block_number=block_number,
            contract_address=require_address(contract_address, "contract address"),
            anchored_at=anchored_at,
        )
        self._get(vc_id)
        return self.store.transition(vc_id, lambda vc: anchor(vc, record))

    def revoke(self, vc_id: str, reason: str = "") -> StoredVC:
        self._get(vc_id)
        updated = self.store.transition(vc_id, lambda vc: revoke(vc, reason))
        logger.info("Credential revoked", extra={"vc_id": vc_id})
        return updated
