"""
agentlink.verifiers — Clients for the external identity proof verifiers.

World ID proofs are checked by the World ID cloud verifier; Self Protocol
proofs by a Self backend verifier service. Both are opaque: this module only
shapes requests and reads the fields of their answers.

Proofs are single use (nullifiers), so failed calls are never retried here.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from eth_utils import keccak

from agentlink.errors import ProofRejectedError, UpstreamVerifierError, ValidationError

logger = logging.getLogger(__name__)

WORLD_ID = "world_id"
SELF_ID = "self_id"


@dataclass
class VerificationOutcome:
    """What a verifier vouched for."""
    provider: str
    is_valid: bool
    nullifier: str
    level: str  # World ID verification level or Self attestation id
    timestamp: int = field(default_factory=lambda: int(time.time()))
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "isValid": self.is_valid,
            "nullifier": self.nullifier,
            "level": self.level,
            "timestamp": self.timestamp,
        }


def _is_hex(value: str) -> bool:
    if not value.startswith("0x") or len(value) % 2:
        return False
    try:
        bytes.fromhex(value[2:])
    except ValueError:
        return False
    return True


def hash_to_field(signal: str = "") -> str:
    """World ID signal hash: keccak256 shifted into the SNARK scalar field."""
    raw = bytes.fromhex(signal[2:]) if _is_hex(signal) else signal.encode("utf-8")
    value = int.from_bytes(keccak(raw), "big") >> 8
    return "0x" + format(value, "064x")


def _json_body(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# ─── World ID ──────────────────────────────────────────────────────

class WorldIDVerifier:
    """World ID cloud proof verification."""

    provider = WORLD_ID
    REQUIRED_FIELDS = ("proof", "merkle_root", "nullifier_hash")

    def __init__(self, app_id: str, action: str = "poh",
                 base_url: str = "https://developer.worldcoin.org",
                 timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.app_id = app_id
        self.action = action
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def check_payload(self, payload: dict, action: str) -> None:
        if action != self.action:
            raise ValidationError(f'Invalid action. Expected "{self.action}"')
        if not isinstance(payload, dict) or not all(payload.get(f) for f in self.REQUIRED_FIELDS):
            raise ValidationError(
                "Invalid payload structure. Missing proof, merkle_root, or nullifier_hash"
            )

    async def verify(self, payload: dict, action: str, signal: str = "") -> VerificationOutcome:
        self.check_payload(payload, action)
        body = {
            "nullifier_hash": payload["nullifier_hash"],
            "merkle_root": payload["merkle_root"],
            "proof": payload["proof"],
            "verification_level": payload.get("verification_level", "orb"),
            "action": action,
            "signal_hash": hash_to_field(signal or ""),
        }
        url = f"{self.base_url}/api/v2/verify/{self.app_id}"
        resp = await _post(self._client, url, body, self.timeout, self.provider)

        if resp.status_code >= 500:
            raise UpstreamVerifierError(self.provider, f"World ID verifier returned {resp.status_code}")
        if resp.status_code >= 400:
            err = _json_body(resp)
            raise ProofRejectedError(
                self.provider,
                err.get("detail") or "World ID verification failed",
                code=err.get("code") or ProofRejectedError.code,
            )

        logger.info("World ID proof accepted", extra={"nullifier": payload["nullifier_hash"]})
        return VerificationOutcome(
            provider=self.provider,
            is_valid=True,
            nullifier=payload["nullifier_hash"],
            level=body["verification_level"],
            details=_json_body(resp),
        )


# ─── Self Protocol ─────────────────────────────────────────────────

def generate_user_context_data(user_id: Optional[str] = None, scope: str = "",
                               endpoint: str = "", custom_data: Optional[dict] = None,
                               session_id: Optional[str] = None,
                               timestamp: Optional[int] = None) -> str:
    """Hex-encoded JSON context blob for Self requests that arrive without one."""
    context = {
        "userId": user_id or str(uuid.uuid4()),
        "sessionId": session_id or f"session-{os.urandom(5).hex()[:9]}",
        "scope": scope,
        "endpoint": endpoint,
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
        **(custom_data or {}),
    }
    return json.dumps(context, separators=(",", ":")).encode("utf-8").hex()


def normalize_self_payload(body: dict) -> dict:
    """Accept ``publicSignals`` for ``pubSignals`` and repair bare ``0x`` signals."""
    signals = body.get("pubSignals") or body.get("publicSignals")
    if not body.get("proof") or not signals:
        raise ValidationError("Missing required fields: proof and pubSignals are required")
    if isinstance(signals, list):
        signals = [
            "0x0" if isinstance(s, str) and s.strip().lower() == "0x" else s
            for s in signals
        ]
    return {**body, "pubSignals": signals}


class SelfVerifier:
    """Forwards Self app proofs to a Self backend verifier service."""

    provider = SELF_ID

    def __init__(self, endpoint: str, scope: str = "agentlink",
                 callback_url: str = "", timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None,
                 attestation_id: int = 1):
        self.endpoint = endpoint
        self.scope = scope
        self.callback_url = callback_url
        self.timeout = timeout
        self.attestation_id = attestation_id
        self._client = client

    def _context_data(self, body: dict) -> str:
        received = body.get("userContextData")
        if isinstance(received, str) and received.strip() and received.strip().lower() != "0x":
            return received
        logger.warning("Self request without usable userContextData; generating one")
        return generate_user_context_data(
            user_id=body.get("userId"),
            scope=self.scope,
            endpoint=self.callback_url,
            custom_data={"action": "verification",
                         "userDefinedData": body.get("userDefinedData") or ""},
        )

    async def verify(self, body: dict) -> VerificationOutcome:
        if not self.endpoint:
            raise UpstreamVerifierError(self.provider, "Self verifier is not configured")
        payload = normalize_self_payload(body)
        request = {
            "attestationId": int(payload.get("attestationId") or self.attestation_id),
            "proof": payload["proof"],
            "pubSignals": payload["pubSignals"],
            "userContextData": self._context_data(payload),
        }
        resp = await _post(self._client, self.endpoint, request, self.timeout, self.provider)
        if resp.status_code >= 500:
            raise UpstreamVerifierError(self.provider, f"Self verifier returned {resp.status_code}")

        result = _json_body(resp)
        if resp.status_code >= 400:
            raise ProofRejectedError(self.provider, result.get("message") or "Self verification failed")

        details = result.get("isValidDetails") or {}
        nullifier = (
            (result.get("discloseOutput") or {}).get("nullifier")
            or (result.get("userData") or {}).get("userIdentifier")
        )
        if not details.get("isValid"):
            raise ProofRejectedError(self.provider, "Self proof is not valid")
        if not nullifier:
            raise UpstreamVerifierError(self.provider, "Self verifier returned no nullifier")

        return VerificationOutcome(
            provider=self.provider,
            is_valid=True,
            nullifier=str(nullifier),
            level=str(result.get("attestationId") or request["attestationId"]),
            details=result,
        )


async def _post(client: Optional[httpx.AsyncClient], url: str, body: Any,
                timeout: float, provider: str) -> httpx.Response:
    try:
        if client is not None:
            return await client.post(url, json=body, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as c:
            return await c.post(url, json=body)
    except httpx.HTTPError as e:
        logger.warning("%s verifier unreachable: %s", provider, type(e).__name__)
        raise UpstreamVerifierError(provider, f"{provider} verifier unreachable") from e
