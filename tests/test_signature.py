from datetime import datetime, timedelta, timezone

import pytest

from proofquest_auth.core.errors import InvalidSignatureError
from proofquest_auth.services.signature import recover_address, verify_siwe_signature
from proofquest_auth.services.siwe import create_siwe_message
from tests.helpers import sign

ISSUED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _challenge(account, nonce="0x" + "1f" * 16, expiration=ISSUED + timedelta(minutes=10)) -> str:
    return create_siwe_message(
        "localhost:8080",
        account.address,
        nonce,
        issued_at=ISSUED,
        expiration_time=expiration,
    ).prepare_message()


class TestRecoverAddress:
    """Tests for EIP-191 signer recovery"""

    def test_recover_address_valid_signature(self, alice):
        recovered = recover_address("Test message", sign(alice, "Test message"))
        assert recovered == alice.address.lower()

    def test_recover_address_accepts_unprefixed_hex(self, alice):
        signature = sign(alice, "Test message")[2:]
        assert recover_address("Test message", signature) == alice.address.lower()

    def test_recover_address_wrong_signer(self, alice, bob):
        recovered = recover_address("Test message", sign(bob, "Test message"))
        assert recovered != alice.address.lower()
        assert recovered == bob.address.lower()


class TestVerifySiweSignature:
    """Tests for the stateless signature verifier"""

    def test_valid_signature_returns_parsed_fields(self, alice):
        message = _challenge(alice)

        verified = verify_siwe_signature(message, sign(alice, message))

        assert verified.address == alice.address.lower()
        assert verified.nonce == "0x" + "1f" * 16
        assert verified.expiration_time == ISSUED + timedelta(minutes=10)
        assert verified.message.domain == "localhost:8080"

    def test_does_not_enforce_expiration(self, alice):
        # expiry belongs to the nonce registry
        message = _challenge(alice, expiration=datetime(2000, 1, 1, tzinfo=timezone.utc))
        verified = verify_siwe_signature(message, sign(alice, message))
        assert verified.address == alice.address.lower()

    def test_signature_from_other_key_is_invalid(self, alice, bob):
        message = _challenge(alice)
        with pytest.raises(InvalidSignatureError):
            verify_siwe_signature(message, sign(bob, message))

    def test_tampered_message_is_invalid(self, alice):
        message = _challenge(alice)
        signature = sign(alice, message)
        tampered = message.replace("Chain ID: 1", "Chain ID: 5")
        with pytest.raises(InvalidSignatureError):
            verify_siwe_signature(tampered, signature)

    @pytest.mark.parametrize("signature", ["0xsignature", "", "0x" + "00" * 65, "0x1234"])
    def test_malformed_signature_is_invalid(self, alice, signature):
        with pytest.raises(InvalidSignatureError):
            verify_siwe_signature(_challenge(alice), signature)

    def test_malformed_message_is_invalid(self, alice):
        message = "This is not a valid SIWE message"
        with pytest.raises(InvalidSignatureError) as exc_info:
            verify_siwe_signature(message, sign(alice, message))
        # no hint about why it failed
        assert exc_info.value.message == "Signature verification failed"
        assert exc_info.value.__cause__ is None
