"""agentlink — Verifiable credentials linking AI agents to verified humans."""

__version__ = "0.1.0"

from agentlink.errors import (
    AgentLinkError, ValidationError, NotFoundError, DuplicateLinkError,
    SigningError, UpstreamVerifierError, ProofRejectedError, NullifierReusedError,
)
from agentlink.proofs import (
    SelfProof, WorldProof, DualProof, HumanProof, IdentityRecord,
    WorldIDVerification, SelfIDVerification, combine, human_proof_from_record,
)
from agentlink.canonical import canonicalize, vc_hash
from agentlink.credential import (
    AgentVC, AnchorRecord, Declaration, VCStatus,
    assemble_agent_vc, issue, apply_signature, anchor, revoke,
    validate_vc_document, vc_summary,
)
from agentlink.signing import (
    MessageSigner, LocalSigner, VerificationStatus, VerificationResult,
    sign_vc, verify_vc,
)
from agentlink.store import VCStore, MemoryVCStore, SQLiteVCStore, StoredVC, open_store
from agentlink.caching import TTLCache, VerificationCache
from agentlink.verifiers import WorldIDVerifier, SelfVerifier, VerificationOutcome
from agentlink.directory import AgentDirectory, AgentRecord, IdentityRegistry
from agentlink.linking import AgentLinker, LinkResult

__all__ = [
    "AgentLinkError",
    "ValidationError",
    "NotFoundError",
    "DuplicateLinkError",
    "SigningError",
    "UpstreamVerifierError",
    "ProofRejectedError",
    "NullifierReusedError",
    "SelfProof",
    "WorldProof",
    "DualProof",
    "HumanProof",
    "IdentityRecord",
    "WorldIDVerification",
    "SelfIDVerification",
    "combine",
    "human_proof_from_record",
    "canonicalize",
    "vc_hash",
    "AgentVC",
    "AnchorRecord",
    "Declaration",
    "VCStatus",
    "assemble_agent_vc",
    "issue",
    "apply_signature",
    "anchor",
    "revoke",
    "validate_vc_document",
    "vc_summary",
    "MessageSigner",
    "LocalSigner",
    "VerificationStatus",
    "VerificationResult",
    "sign_vc",
    "verify_vc",
    "VCStore",
    "MemoryVCStore",
    "SQLiteVCStore",
    "StoredVC",
    "open_store",
    "TTLCache",
    "VerificationCache",
    "WorldIDVerifier",
    "SelfVerifier",
    "VerificationOutcome",
    "AgentDirectory",
    "AgentRecord",
    "IdentityRegistry",
    "AgentLinker",
    "LinkResult",
]
