"""Tests for agentlink.store — credential persistence and pair uniqueness."""

import threading
import time

import pytest
from eth_account import Account

from agentlink.canonical import vc_hash
from agentlink.credential import (
    AnchorRecord, SetStatus, VCStatus, anchor, assemble_agent_vc, issue, revoke,
)
from agentlink.errors import DuplicateLinkError, NotFoundError, ValidationError
from agentlink.signing import sign_vc
from agentlink.store import MemoryVCStore, SQLiteVCStore, StoredVC, open_store
from conftest import make_identity

AGENT_A = "0x" + "11" * 20
AGENT_B = "0x" + "12" * 20


# ─── Helpers ───────────────────────────────────────────────────────

def make_signed(signer, agent=AGENT_A, text="Acts as my trading bot"):
    issued, _ = issue(assemble_agent_vc(agent, make_identity(), text))
    signed, _ = sign_vc(issued, signer)
    return signed


def put(store, vc, user_id="user_1"):
    return store.create(vc, user_id=user_id, vc_hash=vc_hash(vc.to_dict()))


@pytest.fixture
def memory():
    return MemoryVCStore()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteVCStore(str(tmp_path / "vcs.db"))
    yield store
    store.close()


ALL_STORES = ["memory", "sqlite_store"]


@pytest.fixture
def store(request):
    return request.getfixturevalue(request.param)


# ─── VCStore interface (parametrized) ──────────────────────────────

@pytest.mark.parametrize("store", ALL_STORES, indirect=True)
class TestStoreInterface:
    def test_create_get(self, store, dapp_signer):
        vc = make_signed(dapp_signer)
        created = put(store, vc)
        loaded = store.get(vc.vc_id)
        assert loaded.vc == vc
        assert loaded.user_id == "user_1"
        assert loaded.vc_hash == created.vc_hash

    def test_get_missing(self, store):
        assert store.get("vc_nope") is None

    def test_duplicate_pair_rejected(self, store, dapp_signer):
        first = make_signed(dapp_signer)
        put(store, first)
        with pytest.raises(DuplicateLinkError) as exc_info:
            put(store, make_signed(dapp_signer, text="second"))
        assert exc_info.value.existing_vc_id == first.vc_id
        assert len(store.find_by_agent(AGENT_A)) == 1

    def test_pair_is_case_insensitive(self, store, dapp_signer):
        mixed = "0x" + "ab" * 20
        put(store, make_signed(dapp_signer, agent=mixed))
        assert store.find_by_agent_and_user(mixed, "user_1") is not None
        assert store.find_by_agent_and_user(mixed.upper().replace("0X", "0x"), "user_1") is not None

    def test_same_agent_other_user(self, store, dapp_signer):
        put(store, make_signed(dapp_signer), "user_1")
        put(store, make_signed(dapp_signer), "user_2")
        assert len(store.find_by_agent(AGENT_A)) == 2

    def test_user_required(self, store, dapp_signer):
        with pytest.raises(ValidationError):
            store.create(make_signed(dapp_signer), user_id="", vc_hash="0x")

    def test_find_by_agent_newest_first(self, store, dapp_signer):
        old = make_signed(dapp_signer)
        put(store, old, "user_1")
        time.sleep(0.01)
        new = make_signed(dapp_signer)
        put(store, new, "user_2")
        assert [r.vc.vc_id for r in store.find_by_agent(AGENT_A)] == [new.vc_id, old.vc_id]

    def test_find_by_signer_and_user(self, store, dapp_signer):
        vc = make_signed(dapp_signer, agent=AGENT_B)
        put(store, vc, "user_9")
        assert [r.vc.vc_id for r in store.find_by_signer(dapp_signer.address.lower())] == [vc.vc_id]
        assert [r.vc.vc_id for r in store.find_by_user("user_9")] == [vc.vc_id]
        assert store.find_by_user("user_0") == []

    def test_apply_anchor_and_revoke(self, store, dapp_signer):
        vc = make_signed(dapp_signer)
        put(store, vc)
        rec = AnchorRecord("0x" + "aa" * 32, 42, AGENT_B, 1000)
        _, effects = anchor(vc, rec)
        updated = store.apply(vc.vc_id, effects)
        assert updated.vc.status == VCStatus.ANCHORED
        assert store.get(vc.vc_id).vc.anchor == rec

        _, effects = revoke(updated.vc, "compromised")
        store.apply(vc.vc_id, effects)
        loaded = store.get(vc.vc_id)
        assert loaded.vc.status == VCStatus.REVOKED
        assert loaded.vc.revocation_reason == "compromised"
        assert loaded.vc.to_dict() == vc.to_dict()

    def test_apply_missing(self, store):
        with pytest.raises(NotFoundError):
            store.apply("vc_nope", [SetStatus(VCStatus.REVOKED)])

    def test_update_signature(self, store, dapp_signer):
        issued, _ = issue(assemble_agent_vc(AGENT_A, make_identity(), "x"))
        put(store, issued)
        signed, _ = sign_vc(issued, dapp_signer)
        updated = store.update_signature(issued.vc_id, signed.signature,
                                         signed.signer_address, signed.signed_at)
        assert updated.vc == signed

    def test_signature_written_once(self, store, dapp_signer):
        vc = make_signed(dapp_signer)
        put(store, vc)
        other = Account.create().address
        with pytest.raises(ValidationError):
            store.update_signature(vc.vc_id, "0xdeadbeef", other, 1)
        loaded = store.get(vc.vc_id).vc
        assert loaded.signature == vc.signature
        assert loaded.signer_address == vc.signer_address

    def test_apply_rejects_illegal_status(self, store, dapp_signer):
        issued, _ = issue(assemble_agent_vc(AGENT_A, make_identity(), "x"))
        put(store, issued)
        with pytest.raises(ValidationError):
            store.apply(issued.vc_id, [SetStatus(VCStatus.ANCHORED)])
        assert store.get(issued.vc_id).vc.status == VCStatus.ISSUED

    def test_stale_anchor_after_revoke(self, store, dapp_signer):
        vc = make_signed(dapp_signer)
        put(store, vc)
        seen = store.get(vc.vc_id).vc
        _, anchor_effects = anchor(seen, AnchorRecord("0x" + "aa" * 32, 42, AGENT_B, 1000))
        store.apply(vc.vc_id, revoke(seen, "compromised")[1])

        with pytest.raises(ValidationError):
            store.apply(vc.vc_id, anchor_effects)
        loaded = store.get(vc.vc_id).vc
        assert loaded.status == VCStatus.REVOKED
        assert loaded.anchor is None

    def test_transition_sees_current_value(self, store, dapp_signer):
        vc = make_signed(dapp_signer)
        put(store, vc)
        store.apply(vc.vc_id, revoke(vc)[1])
        seen = []

        def step(current):
            seen.append(current.status)
            return anchor(current, AnchorRecord("0x" + "aa" * 32, 42, AGENT_B, 1000))

        with pytest.raises(ValidationError):
            store.transition(vc.vc_id, step)
        assert seen == [VCStatus.REVOKED]

    def test_transition(self, store, dapp_signer):
        vc = make_signed(dapp_signer)
        put(store, vc)
        updated = store.transition(vc.vc_id, lambda current: revoke(current, "done"))
        assert updated.vc.status == VCStatus.REVOKED
        assert store.get(vc.vc_id).vc.revocation_reason == "done"

    def test_concurrent_links_one_wins(self, store, dapp_signer):
        candidates = [make_signed(dapp_signer, text=f"attempt {i}") for i in range(8)]
        wins, dupes = [], []
        barrier = threading.Barrier(len(candidates))

        def attempt(vc):
            barrier.wait()
            try:
                put(store, vc)
                wins.append(vc.vc_id)
            except DuplicateLinkError:
                dupes.append(vc.vc_id)

        threads = [threading.Thread(target=attempt, args=(vc,)) for vc in candidates]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert len(dupes) == len(candidates) - 1
        assert store.find_by_agent_and_user(AGENT_A, "user_1").vc.vc_id == wins[0]


class TestSQLite:
    def test_persists_across_reopen(self, tmp_path, dapp_signer):
        path = str(tmp_path / "vcs.db")
        vc = make_signed(dapp_signer)
        store = SQLiteVCStore(path)
        put(store, vc)
        store.close()

        reopened = SQLiteVCStore(path)
        try:
            assert reopened.get(vc.vc_id).vc == vc
            with pytest.raises(DuplicateLinkError):
                put(reopened, make_signed(dapp_signer))
        finally:
            reopened.close()

    def test_duplicate_id(self, sqlite_store, dapp_signer):
        vc = make_signed(dapp_signer)
        put(sqlite_store, vc, "user_1")
        with pytest.raises(ValidationError):
            put(sqlite_store, vc, "user_2")


class TestStoredVC:
    def test_dict_round_trip(self, dapp_signer):
        rec = MemoryVCStore().create(make_signed(dapp_signer), user_id="u", vc_hash="0x01")
        assert StoredVC.from_dict(rec.to_dict()) == rec


def test_open_store(tmp_path):
    assert isinstance(open_store(), MemoryVCStore)
    store = open_store(str(tmp_path / "x.db"))
    assert isinstance(store, SQLiteVCStore)
    store.close()
