"""Global test configuration — runs before any test module imports."""
import os
from datetime import datetime, timezone

import pytest

# Must be set BEFORE any agentlink imports — slowapi reads this at init
os.environ["RATELIMIT_ENABLED"] = "False"
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-global")
os.environ.pop("AGENTLINK_DAPP_PRIVATE_KEY", None)

TEST_ADMIN_KEY = os.environ["ADMIN_API_KEY"]
ADMIN_HEADERS = {"X-Admin-Key": TEST_ADMIN_KEY}

# Fixed test key (never use outside tests)
DAPP_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
VERIFIED_AT = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Disable rate limiter after all imports."""
    try:
        from agentlink.security import limiter
        limiter.enabled = False
    except ImportError:
        pass


def make_identity(user_id="user_test", wallet=None, world=True, self_=False,
                  nullifier_hash="0xabc", self_nullifier="0xdef"):
    from eth_account import Account
    from agentlink.proofs import IdentityRecord, SelfIDVerification, WorldIDVerification

    wallet = wallet or Account.create().address.lower()
    record = IdentityRecord(user_id=user_id, wallet_address=wallet)
    if world:
        record.world_id = WorldIDVerification(
            is_verified=True,
            nullifier_hash=nullifier_hash,
            verification_level="orb",
            verification_date=VERIFIED_AT,
        )
    if self_:
        record.self_id = SelfIDVerification(
            is_verified=True,
            user_identifier="0xuser",
            verification_date=VERIFIED_AT,
            verification_data={"attestationId": 2, "discloseOutput": {"nullifier": self_nullifier}},
        )
    return record


@pytest.fixture
def dapp_signer():
    from agentlink.signing import LocalSigner
    return LocalSigner.from_private_key(DAPP_KEY)


@pytest.fixture
def world_user():
    return make_identity()


@pytest.fixture
def agent_address():
    return "0x" + "11" * 20
