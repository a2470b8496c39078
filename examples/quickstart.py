#!/usr/bin/env python3
"""agentlink quickstart — link an agent to a verified human in under 50 lines.

Run:  python3 examples/quickstart.py
"""
from eth_account import Account

from agentlink import (
    AgentDirectory, AgentLinker, IdentityRegistry, LocalSigner,
    MemoryVCStore, VerificationOutcome, verify_vc,
)

# 1. The platform signer and an empty registry
linker = AgentLinker(MemoryVCStore(), AgentDirectory(), IdentityRegistry(),
                     LocalSigner.generate())
print(f"🔑 DApp signer: {linker.signer.address}")

# 2. A human proves personhood with World ID (outcome as returned by WorldIDVerifier)
wallet = Account.create().address
linker.identities.record_world_id(wallet, VerificationOutcome(
    provider="world_id", is_valid=True, nullifier="0xabc", level="orb",
))
print(f"👤 Verified wallet: {wallet}")

# 3. The human creates an agent wallet and links it
agent, _private_key = linker.directory.create_agent("Trading bot", wallet)
result = linker.link(agent.address, wallet, "Acts as my trading bot")
print(f"🤖 Agent: {agent.address}")
print(f"📄 VC {result.vc.vc_id} hash {result.vc_hash[:18]}…")

# 4. Anyone can check the credential from the document alone
doc = result.vc.to_dict()
check = verify_vc(doc)
print(f"✅ Signature {check.status.value}, signed by {check.recovered_address}")

# 5. Tampering is detected
doc["declaration"]["description"] = "Acts as my lending bot"
print(f"❌ After tampering: {verify_vc(doc).status.value}")
