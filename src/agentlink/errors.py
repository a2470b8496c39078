"""
agentlink.errors — Error taxonomy for credential linking.

Every error carries a stable machine code and the HTTP status the API
surfaces it with. Verification mismatches are NOT errors: see
agentlink.signing.VerificationStatus.
"""

from typing import Optional


class AgentLinkError(Exception):
    """Base class for all client-visible agentlink errors."""

    code = "AGENTLINK_ERROR"
    status_code = 500

    def __init__(self, detail: str, *, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail}


class ValidationError(AgentLinkError):
    """Malformed input: bad address, empty declaration, no identity proof."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AgentLinkError):
    code = "NOT_FOUND"
    status_code = 404


class DuplicateLinkError(AgentLinkError):
    """The (agent, user) pair already has a credential."""

    code = "ALREADY_LINKED"
    status_code = 409

    def __init__(self, agent_id: str, user_id: str, existing_vc_id: Optional[str] = None):
        super().__init__(f"Agent {agent_id} is already linked to this user")
        self.agent_id = agent_id
        self.user_id = user_id
        self.existing_vc_id = existing_vc_id


class SigningError(AgentLinkError):
    """Signer unavailable or failed. The credential stays ``issued``."""

    code = "SIGNING_FAILED"
    status_code = 502

    def __init__(self, detail: str, vc=None):
        super().__init__(detail)
        self.vc = vc


class UpstreamVerifierError(AgentLinkError):
    """Identity provider unreachable or returned an unusable answer."""

    code = "UPSTREAM_VERIFIER_ERROR"
    status_code = 502

    def __init__(self, provider: str, detail: str, *, code: Optional[str] = None):
        super().__init__(detail, code=code)
        self.provider = provider

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail, "provider": self.provider}


class ProofRejectedError(UpstreamVerifierError):
    """Identity provider answered and rejected the proof."""

    code = "PROOF_REJECTED"
    status_code = 400


class NullifierReusedError(AgentLinkError):
    """A one-time nullifier is already bound to a user."""

    code = "ALREADY_VERIFIED"
    status_code = 400
