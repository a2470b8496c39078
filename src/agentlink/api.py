"""
agentlink API — HTTP surface for identity verification and agent linking.

Router prefix: /api
  GET  /health
  POST /world-id/verify              — verify a World ID proof for a wallet
  GET  /world-id/status/{wallet}     — verification status
  POST /self/verify                  — Self app callback
  POST /agents                       — create an agent wallet
  POST /agents/{agent_id}/link       — link agent to a verified human (issues a VC)
  GET  /agents/{agent_id}/vc         — latest VC for an agent
  GET  /users/{wallet}/vcs           — VCs for a user / signer
  POST /vcs/{vc_id}/verify           — signature check (unsigned | valid | invalid)
  POST /vcs/{vc_id}/anchor           — record on-chain anchoring (admin)
  POST /vcs/{vc_id}/revoke           — revoke (admin)
"""

import logging
import os
import time
from typing import Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from pydantic import BaseModel, ConfigDict, Field

from agentlink import __version__
from agentlink.caching import VerificationCache
from agentlink.config import Settings
from agentlink.credential import is_chain_address, vc_summary
from agentlink.directory import AgentDirectory, IdentityRegistry
from agentlink.errors import ValidationError
from agentlink.linking import AgentLinker
from agentlink.security import apply_security, limiter, require_admin_key
from agentlink.store import open_store
from agentlink.verifiers import SelfVerifier, WorldIDVerifier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class WorldIDVerifyRequest(_CamelModel):
    payload: dict
    action: str
    signal: str = ""
    wallet_address: str = Field(..., alias="walletAddress")


class CreateAgentRequest(_CamelModel):
    name: str
    owner_wallet: str = Field(..., alias="ownerWallet")
    description: str = ""


class LinkRequest(_CamelModel):
    wallet_address: str = Field(..., alias="walletAddress")
    declaration: str


class AnchorRequest(_CamelModel):
    transaction_hash: str = Field(..., alias="transactionHash", min_length=66, max_length=66)
    block_number: int = Field(..., alias="blockNumber", ge=0)
    contract_address: str = Field(..., alias="contractAddress")
    anchored_at: Optional[int] = Field(None, alias="anchoredAt")


class RevokeRequest(BaseModel):
    reason: str = Field("", max_length=500)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    signer: Optional[str] = None
    store: str = "memory"


class VerifyVCResponse(BaseModel):
    success: bool = True
    status: str
    isValid: bool
    vcHash: str
    signerAddress: Optional[str] = None
    recoveredAddress: Optional[str] = None
    vc: dict
    message: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api", tags=["agentlink"])


def _linker(request: Request) -> AgentLinker:
    return request.app.state.linker


def _require_wallet(value: str, field_name: str = "wallet address") -> str:
    if not is_chain_address(value):
        raise ValidationError(f"Invalid {field_name} format")
    return value


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    linker = _linker(request)
    return HealthResponse(
        signer=linker.signer.address if linker.signer else None,
        store=type(linker.store).__name__,
    )


@router.post("/world-id/verify")
@limiter.limit("20/minute")
async def world_id_verify(request: Request, body: WorldIDVerifyRequest):
    wallet = _require_wallet(body.wallet_address)
    verifier: WorldIDVerifier = request.app.state.world_id
    identities: IdentityRegistry = _linker(request).identities

    verifier.check_payload(body.payload, body.action)
    # Reject reused nullifiers before spending the proof upstream
    identities.check_nullifier(verifier.provider, body.payload["nullifier_hash"])

    outcome = await verifier.verify(body.payload, body.action, body.signal)
    user = identities.record_world_id(wallet, outcome, merkle_root=body.payload.get("merkle_root"))
    return {
        "success": True,
        "message": "World ID verification successful",
        "user": user.public_info(),
        "verificationResult": outcome.to_dict(),
    }


@router.get("/world-id/status/{wallet_address}")
def world_id_status(wallet_address: str, request: Request):
    _require_wallet(wallet_address)
    user = _linker(request).identities.get_by_wallet(wallet_address)
    if user is None:
        return {"success": True, "verified": False, "message": "User not found"}
    return {"success": True, "verified": user.has_world_id, "user": user.public_info()}


@router.post("/self/verify")
@limiter.limit("20/minute")
async def self_verify(request: Request, body: dict = Body(...)):
    verifier: SelfVerifier = request.app.state.self_verifier
    identities: IdentityRegistry = _linker(request).identities

    wallet = body.get("walletAddress") or body.get("userId")
    outcome = await verifier.verify(body)
    user = None
    if is_chain_address(wallet):
        user = identities.record_self_id(wallet, outcome)
    else:
        logger.info("Self verification without wallet binding", extra={"nullifier": outcome.nullifier})

    return {
        "status": "success",
        "result": True,
        "verified": True,
        "message": "Identity verification successful",
        "verificationResult": outcome.to_dict(),
        "user": user.public_info() if user else None,
        "verificationTimestamp": int(time.time() * 1000),
    }


@router.post("/agents", status_code=201)
def create_agent(request: Request, body: CreateAgentRequest):
    agent, private_key = _linker(request).directory.create_agent(
        body.name, body.owner_wallet, body.description,
    )
    return {
        "success": True,
        "agent": agent.public_info(),
        "privateKey": private_key,
        "message": "Store this key securely — it won't be shown again.",
    }


@router.post("/agents/{agent_id}/link", status_code=201)
@limiter.limit("10/minute")
def link_agent(agent_id: str, request: Request, body: LinkRequest):
    result = _linker(request).link(agent_id, body.wallet_address, body.declaration)
    return {"success": True, "message": "Agent linked successfully and VC generated", **result.to_dict()}


@router.get("/agents/{agent_id}/vc")
def agent_vc(agent_id: str, request: Request):
    record = _linker(request).latest_for_agent(agent_id)
    return {
        "success": True,
        "vc": record.vc.to_dict(),
        "summary": vc_summary(record.vc),
        "vcHash": record.vc_hash,
    }


@router.get("/users/{wallet_address}/vcs")
def user_vcs(wallet_address: str, request: Request):
    records = _linker(request).for_wallet(wallet_address)
    return {
        "success": True,
        "count": len(records),
        "vcs": [vc_summary(r.vc, vc_hash=r.vc_hash) for r in records],
    }


_MESSAGES = {
    "valid": "VC signature is valid",
    "invalid": "VC signature is invalid",
    "unsigned": "VC is not signed",
}


@router.post("/vcs/{vc_id}/verify", response_model=VerifyVCResponse)
def verify_vc_route(vc_id: str, request: Request):
    record, result = _linker(request).verify(vc_id)
    return VerifyVCResponse(
        **result.to_dict(),
        vc=vc_summary(record.vc, vc_hash=record.vc_hash),
        message=_MESSAGES[result.status.value],
    )


@router.post("/vcs/{vc_id}/anchor")
def anchor_vc(vc_id: str, request: Request, body: AnchorRequest,
              _admin: bool = Depends(require_admin_key)):
    record = _linker(request).anchor(
        vc_id, body.transaction_hash, body.block_number, body.contract_address,
        body.anchored_at if body.anchored_at is not None else int(time.time()),
    )
    return {"success": True, "vc": vc_summary(record.vc, vc_hash=record.vc_hash)}


@router.post("/vcs/{vc_id}/revoke")
def revoke_vc(vc_id: str, request: Request, body: RevokeRequest,
              _admin: bool = Depends(require_admin_key)):
    record = _linker(request).revoke(vc_id, body.reason)
    return {"success": True, "vc": vc_summary(record.vc, vc_hash=record.vc_hash)}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def build_linker(settings: Settings) -> AgentLinker:
    cache = VerificationCache(max_size=settings.cache_size, ttl=settings.cache_ttl)
    signer = settings.load_signer()
    if signer is None:
        logger.warning("No DApp signing key configured; linking will fail until one is set")
    return AgentLinker(
        store=open_store(settings.db_path or None),
        directory=AgentDirectory(),
        identities=IdentityRegistry(cache=cache),
        signer=signer,
        issuer=settings.issuer,
        schema=settings.schema_url,
    )


def create_app(settings: Optional[Settings] = None, *,
               linker: Optional[AgentLinker] = None,
               world_id: Optional[WorldIDVerifier] = None,
               self_verifier: Optional[SelfVerifier] = None) -> FastAPI:
    """Create the FastAPI app. Collaborators may be injected for tests."""
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="agentlink API",
        description="Verifiable credentials linking AI agents to verified humans",
        version=__version__,
        docs_url=None if os.environ.get("AGENTLINK_PRODUCTION") else "/docs",
        redoc_url=None,
    )
    apply_security(app, settings)
    app.state.settings = settings
    app.state.linker = linker or build_linker(settings)
    app.state.world_id = world_id or WorldIDVerifier(
        app_id=settings.world_id_app_id,
        action=settings.world_id_action,
        base_url=settings.world_id_base_url,
        timeout=settings.http_timeout,
    )
    app.state.self_verifier = self_verifier or SelfVerifier(
        endpoint=settings.self_verifier_url,
        scope=settings.self_scope,
        callback_url=settings.self_callback_url,
        timeout=settings.http_timeout,
    )
    app.include_router(router)
    return app
