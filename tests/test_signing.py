"""Tests for agentlink.signing — sign/verify and the tri-state result."""

import json
import os
import stat

import pytest
from eth_account import Account

from agentlink.canonical import vc_hash
from agentlink.credential import AgentVC, VCStatus, assemble_agent_vc, issue
from agentlink.errors import SigningError, ValidationError
from agentlink.signing import (
    LocalSigner, MessageSigner, VerificationStatus, recover_signer, sign_vc, verify_vc,
)
from conftest import DAPP_KEY, make_identity

AGENT = "0x" + "11" * 20


@pytest.fixture
def issued():
    draft = assemble_agent_vc(AGENT, make_identity(), "Acts as my trading bot", now=100)
    return issue(draft)[0]


class BrokenSigner(MessageSigner):
    @property
    def address(self):
        return "0x" + "33" * 20

    def sign_message(self, message):
        raise ConnectionError("wallet offline")


class LyingSigner(MessageSigner):
    """Signs with one key but claims another address."""

    def __init__(self):
        self._inner = LocalSigner.generate()

    @property
    def address(self):
        return "0x" + "44" * 20

    def sign_message(self, message):
        return self._inner.sign_message(message)


class TestLocalSigner:
    def test_from_private_key(self, dapp_signer):
        assert dapp_signer.address == Account.from_key(DAPP_KEY).address

    def test_invalid_key(self):
        with pytest.raises(SigningError):
            LocalSigner.from_private_key("not-a-key")

    def test_save_load(self, tmp_path):
        signer = LocalSigner.generate()
        path = str(tmp_path / "keys" / "dapp.json")
        signer.save(path)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        with open(path) as f:
            assert json.load(f)["address"] == signer.address
        assert LocalSigner.load(path).address == signer.address

    def test_signature_format(self, dapp_signer):
        sig = dapp_signer.sign_message(b"\x01" * 32)
        assert sig.startswith("0x")
        assert len(sig) == 132


class TestSign:
    def test_round_trip(self, issued, dapp_signer):
        signed, _ = sign_vc(issued, dapp_signer, now=200)
        assert signed.status == VCStatus.SIGNED
        assert signed.signer_address == dapp_signer.address
        assert signed.signed_at == 200
        result = verify_vc(signed)
        assert result.status == VerificationStatus.VALID
        assert result.is_valid
        assert result.recovered_address == dapp_signer.address

    def test_hash_stable_across_signing(self, issued, dapp_signer):
        signed, _ = sign_vc(issued, dapp_signer)
        assert vc_hash(issued.to_dict()) == vc_hash(signed.to_dict())
        assert verify_vc(signed).vc_hash == vc_hash(issued.to_dict())

    def test_signing_twice_both_verify(self, issued, dapp_signer):
        a, _ = sign_vc(issued, dapp_signer)
        b, _ = sign_vc(issued, dapp_signer)
        assert verify_vc(a).is_valid
        assert verify_vc(b).is_valid

    def test_personal_message_not_raw_hash(self, issued, dapp_signer):
        signed, _ = sign_vc(issued, dapp_signer)
        digest = bytes.fromhex(vc_hash(signed.to_dict())[2:])
        assert recover_signer(digest, signed.signature) == dapp_signer.address

    def test_requires_issued(self, dapp_signer):
        draft = assemble_agent_vc(AGENT, make_identity(), "x")
        with pytest.raises(ValidationError):
            sign_vc(draft, dapp_signer)

    def test_missing_signer(self, issued):
        with pytest.raises(SigningError) as exc_info:
            sign_vc(issued, None)
        assert exc_info.value.vc is issued

    def test_signer_failure_leaves_issued(self, issued):
        with pytest.raises(SigningError) as exc_info:
            sign_vc(issued, BrokenSigner())
        assert exc_info.value.vc.status == VCStatus.ISSUED
        assert not exc_info.value.vc.is_signed

    def test_signer_address_mismatch(self, issued):
        with pytest.raises(SigningError):
            sign_vc(issued, LyingSigner())

    def test_retry_after_failure(self, issued, dapp_signer):
        with pytest.raises(SigningError) as exc_info:
            sign_vc(issued, BrokenSigner())
        signed, _ = sign_vc(exc_info.value.vc, dapp_signer)
        assert verify_vc(signed).is_valid


class TestVerify:
    def test_unsigned(self, issued):
        result = verify_vc(issued)
        assert result.status == VerificationStatus.UNSIGNED
        assert not result.is_valid

    def test_unsigned_dict(self, issued):
        assert verify_vc(issued.to_dict()).status == VerificationStatus.UNSIGNED

    def test_tampered_declaration(self, issued, dapp_signer):
        signed, _ = sign_vc(issued, dapp_signer)
        doc = signed.to_dict()
        doc["declaration"]["description"] = "Acts as my lending bot"
        result = verify_vc(doc)
        assert result.status == VerificationStatus.INVALID
        assert result.recovered_address != dapp_signer.address

    def test_wrong_claimed_signer(self, issued, dapp_signer):
        doc = sign_vc(issued, dapp_signer)[0].to_dict()
        doc["signerAddress"] = "0x" + "55" * 20
        assert verify_vc(doc).status == VerificationStatus.INVALID

    def test_garbage_signature_is_invalid_not_error(self, issued, dapp_signer):
        doc = sign_vc(issued, dapp_signer)[0].to_dict()
        doc["signature"] = "0xdeadbeef"
        result = verify_vc(doc)
        assert result.status == VerificationStatus.INVALID
        assert result.recovered_address is None

    def test_case_insensitive_signer(self, issued, dapp_signer):
        doc = sign_vc(issued, dapp_signer)[0].to_dict()
        doc["signerAddress"] = doc["signerAddress"].lower()
        assert verify_vc(doc).is_valid

    def test_from_dict_round_trip(self, issued, dapp_signer):
        doc = sign_vc(issued, dapp_signer)[0].to_dict()
        assert verify_vc(AgentVC.from_dict(json.loads(json.dumps(doc)))).is_valid

    def test_to_dict(self, issued, dapp_signer):
        d = verify_vc(sign_vc(issued, dapp_signer)[0]).to_dict()
        assert d["status"] == "valid"
        assert d["isValid"] is True
        assert d["vcHash"].startswith("0x")
