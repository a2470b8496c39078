"""Tests for agentlink.directory — agents, users and nullifier binding."""

import pytest
from eth_account import Account

from agentlink.caching import VerificationCache
from agentlink.directory import AgentDirectory, IdentityRegistry
from agentlink.errors import NullifierReusedError, ValidationError
from agentlink.verifiers import SELF_ID, WORLD_ID, VerificationOutcome
from conftest import make_identity


def world_outcome(nullifier="0xabc", level="orb"):
    return VerificationOutcome(provider=WORLD_ID, is_valid=True, nullifier=nullifier,
                               level=level, timestamp=1736942400)


def self_outcome(nullifier="0xnull", attestation="2"):
    return VerificationOutcome(provider=SELF_ID, is_valid=True, nullifier=nullifier,
                               level=attestation, timestamp=1736942400,
                               details={"userData": {"userIdentifier": "0xuid"}})


@pytest.fixture
def owner():
    return Account.create().address


class TestAgentDirectory:
    def test_create_agent(self, owner):
        d = AgentDirectory()
        agent, key = d.create_agent("Trader", owner, "Trades things")
        assert Account.from_key(key).address == agent.address
        assert d.exists(agent.address.lower())
        assert agent.public_info()["ownerWalletAddress"] == owner

    def test_register_duplicate(self, owner):
        d = AgentDirectory()
        d.register("0x" + "11" * 20, "Bot", owner)
        with pytest.raises(ValidationError):
            d.register("0x" + "11" * 20, "Bot 2", owner)

    @pytest.mark.parametrize("name", ["", "x", "y" * 51])
    def test_name_length(self, owner, name):
        with pytest.raises(ValidationError):
            AgentDirectory().register("0x" + "11" * 20, name, owner)

    def test_bad_owner(self):
        with pytest.raises(ValidationError):
            AgentDirectory().register("0x" + "11" * 20, "Bot", "0xnope")

    def test_link_user(self, owner):
        d = AgentDirectory()
        agent = d.register("0x" + "11" * 20, "Bot", owner)
        d.link_user(agent.address, "u1")
        d.link_user(agent.address, "u1")
        assert agent.linked_users == ["u1"]
        assert d.list() == [agent]

    def test_get_missing(self):
        assert AgentDirectory().get("0x" + "99" * 20) is None


class TestIdentityRegistry:
    def test_ensure_user_idempotent(self, owner):
        reg = IdentityRegistry()
        a = reg.ensure_user(owner)
        b = reg.ensure_user(owner.lower())
        assert a is b
        assert a.user_id.startswith("user_")
        assert a.wallet_address == owner.lower()
        assert reg.get(a.user_id) is a

    def test_record_world_id(self, owner):
        reg = IdentityRegistry()
        user = reg.record_world_id(owner, world_outcome(), merkle_root="0xroot")
        assert user.has_world_id
        assert user.world_id.nullifier_hash == "0xabc"
        assert user.world_id.merkle_root == "0xroot"
        assert user.is_human_verified

    def test_record_self_id(self, owner):
        reg = IdentityRegistry()
        user = reg.record_self_id(owner, self_outcome())
        assert user.has_self_id
        assert user.self_id.verification_data["attestationId"] == 2
        assert user.self_id.verification_data["discloseOutput"]["nullifier"] == "0xnull"

    def test_nullifier_reuse_other_wallet(self, owner):
        reg = IdentityRegistry()
        reg.record_world_id(owner, world_outcome())
        with pytest.raises(NullifierReusedError):
            reg.record_world_id(Account.create().address, world_outcome())

    def test_nullifier_reuse_after_cache_expiry(self, owner):
        reg = IdentityRegistry(cache=VerificationCache(ttl=60))
        reg.record_world_id(owner, world_outcome())
        reg.cache.forget(WORLD_ID, "0xabc")
        with pytest.raises(NullifierReusedError):
            reg.check_nullifier(WORLD_ID, "0xABC")

    def test_providers_independent(self, owner):
        reg = IdentityRegistry()
        reg.record_world_id(owner, world_outcome(nullifier="0x1"))
        reg.check_nullifier(SELF_ID, "0x1")

    def test_check_requires_nullifier(self):
        with pytest.raises(ValidationError):
            IdentityRegistry().check_nullifier(WORLD_ID, "")

    def test_add_existing_record(self):
        reg = IdentityRegistry()
        record = reg.add(make_identity(user_id="u9"))
        assert reg.get("u9") is record
        assert reg.get_by_wallet(record.wallet_address) is record
        with pytest.raises(NullifierReusedError):
            reg.check_nullifier(WORLD_ID, "0xabc")

    def test_add_rejects_shared_self_nullifier(self):
        reg = IdentityRegistry()
        reg.add(make_identity(user_id="ua", world=False, self_=True, self_nullifier="0xsame"))
        other = make_identity(user_id="ub", world=False, self_=True, self_nullifier="0xsame")
        other.self_id.user_identifier = "0xsomeone-else"
        with pytest.raises(NullifierReusedError):
            reg.add(other)
        assert reg.get("ub") is None

    def test_add_rejected_record_claims_nothing(self):
        reg = IdentityRegistry()
        reg.add(make_identity(user_id="ua", nullifier_hash="0xw1", self_=True, self_nullifier="0xs1"))
        clash = make_identity(user_id="ub", nullifier_hash="0xw2", self_=True, self_nullifier="0xs1")
        with pytest.raises(NullifierReusedError):
            reg.add(clash)
        reg.check_nullifier(WORLD_ID, "0xw2")
