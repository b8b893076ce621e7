from datetime import timedelta
from unittest.mock import MagicMock, Mock

import pytest
from jose.exceptions import JWTError

from proofquest_auth.core.config import Settings
from proofquest_auth.core.deps import ANONYMOUS, IdentityContext
from proofquest_auth.core.errors import (
    DependencyError,
    InvalidAddressError,
    InvalidSignatureError,
    MissingFieldsError,
    NonceExpiredError,
    NonceMismatchError,
    RequestValidationFailed,
    UserNotFoundError,
)
from proofquest_auth.models.user import User
from proofquest_auth.services.auth_service import SiweAuthService
from proofquest_auth.services.siwe import parse_siwe_message
from proofquest_auth.services.user_directory import SqlAlchemyUserDirectory
from tests.helpers import sign


@pytest.fixture
def directory():
    directory = Mock()
    directory.get_by_address.return_value = None
    directory.upsert.side_effect = lambda address: User(address=address)
    return directory


@pytest.fixture
def service(registry, directory, issuer):
    return SiweAuthService(
        registry=registry,
        directory=directory,
        issuer=issuer,
        settings=Settings(jwt_secret="unused"),
    )


class TestRequestNonce:
    """Tests for issuing challenges"""

    def test_defaults_from_settings(self, service, registry, alice, clock):
        challenge = service.request_nonce(alice.address)

        parsed = parse_siwe_message(challenge.message)
        assert challenge.domain == "localhost:8080"
        assert parsed.domain == "localhost:8080"
        assert parsed.chain_id == 1
        assert parsed.nonce == challenge.nonce
        assert parsed.address == alice.address.lower()
        assert parsed.expiration_time == challenge.expires_at
        assert challenge.expires_at == clock.now + timedelta(minutes=10)
        assert registry.get(alice.address).nonce == challenge.nonce

    def test_custom_domain_and_chain(self, service, alice):
        challenge = service.request_nonce(alice.address, domain="app.proofquest.xyz", chain_id=8453)

        parsed = parse_siwe_message(challenge.message)
        assert parsed.domain == "app.proofquest.xyz"
        assert parsed.uri == "https://app.proofquest.xyz"
        assert parsed.chain_id == 8453

    def test_invalid_address_stores_nothing(self, service, registry):
        with pytest.raises(InvalidAddressError):
            service.request_nonce("0xnotanaddress")
        assert len(registry) == 0

    @pytest.mark.parametrize("kwargs", [{"domain": "evil com"}, {"chain_id": -1}])
    def test_unusable_challenge_fields_store_nothing(self, service, registry, alice, kwargs):
        first = service.request_nonce(alice.address)

        with pytest.raises(RequestValidationFailed):
            service.request_nonce(alice.address, **kwargs)

        assert registry.get(alice.address).nonce == first.nonce


class TestSignIn:
    """Tests for the sign-in orchestration"""

    def test_new_user_is_created(self, service, directory, issuer, alice):
        challenge = service.request_nonce(alice.address)

        result = service.sign_in(challenge.message, sign(alice, challenge.message))

        address = alice.address.lower()
        directory.upsert.assert_called_once_with(address)
        directory.touch_last_login.assert_not_called()
        assert result.user.address == address
        assert issuer.verify(result.session.token) == address

    def test_existing_user_login_is_touched(self, service, directory, alice):
        existing = User(address=alice.address.lower(), nickname="alice")
        directory.get_by_address.return_value = existing
        challenge = service.request_nonce(alice.address)

        result = service.sign_in(challenge.message, sign(alice, challenge.message))

        assert result.user is existing
        directory.touch_last_login.assert_called_once_with(alice.address.lower())
        directory.upsert.assert_not_called()

    @pytest.mark.parametrize("message, signature", [("", "0xabc"), ("msg", ""), ("   ", "  "), (None, None)])
    def test_missing_fields(self, service, message, signature):
        with pytest.raises(MissingFieldsError):
            service.sign_in(message, signature)

    def test_bad_signature_leaves_nonce_live(self, service, registry, alice, bob):
        challenge = service.request_nonce(alice.address)

        with pytest.raises(InvalidSignatureError):
            service.sign_in(challenge.message, sign(bob, challenge.message))

        assert registry.get(alice.address).nonce == challenge.nonce
        service.sign_in(challenge.message, sign(alice, challenge.message))

    def test_replay_is_rejected(self, service, alice):
        challenge = service.request_nonce(alice.address)
        signature = sign(alice, challenge.message)
        service.sign_in(challenge.message, signature)

        with pytest.raises(NonceMismatchError):
            service.sign_in(challenge.message, signature)

    def test_expired_nonce(self, service, alice, clock, directory):
        challenge = service.request_nonce(alice.address)
        clock.advance(minutes=11)

        with pytest.raises(NonceExpiredError):
            service.sign_in(challenge.message, sign(alice, challenge.message))
        directory.upsert.assert_not_called()

    def test_directory_failure_after_consumption(self, service, registry, directory, alice):
        """Test a directory failure surfaces as DependencyError and the nonce stays consumed"""
        # Arrange
        directory.get_by_address.side_effect = RuntimeError("db gone")
        challenge = service.request_nonce(alice.address)
        signature = sign(alice, challenge.message)

        # Act
        with pytest.raises(DependencyError) as exc_info:
            service.sign_in(challenge.message, signature)

        # Assert
        assert exc_info.value.status_code == 500
        assert registry.get(alice.address) is None
        directory.get_by_address.side_effect = None
        with pytest.raises(NonceMismatchError):
            service.sign_in(challenge.message, signature)

    def test_steps_run_in_order(self, issuer, alice):
        """Test verify, consume, resolve and mint happen in that order"""
        manager = MagicMock()
        registry = manager.registry
        directory = manager.directory
        directory.get_by_address.return_value = User(address=alice.address.lower())
        mint_issuer = manager.issuer
        mint_issuer.mint.side_effect = issuer.mint
        service = SiweAuthService(registry=registry, directory=directory, issuer=mint_issuer)

        message = (
            "localhost:8080 wants you to sign in with your Ethereum account:\n"
            f"{alice.address}\n\n"
            "URI: https://localhost:8080\nVersion: 1\nChain ID: 1\n"
            "Nonce: 0x0123456789abcdef\nIssued At: 2024-01-01T00:00:00.000Z"
        )
        service.sign_in(message, sign(alice, message))

        names = [c[0] for c in manager.mock_calls]
        assert names == [
            "registry.validate_and_consume",
            "directory.get_by_address",
            "directory.touch_last_login",
            "issuer.mint",
        ]
        registry.validate_and_consume.assert_called_once_with(alice.address.lower(), "0x0123456789abcdef")


class TestSessionOperations:
    """Tests for verify, refresh and sign-out"""

    def test_verify_session_returns_user(self, service, directory):
        user = User(address="0x" + "aa" * 20)
        directory.get_by_address.return_value = user
        assert service.verify_session(IdentityContext(address=user.address)) is user

    def test_verify_session_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            service.verify_session(IdentityContext(address="0x" + "aa" * 20))

    def test_verify_session_directory_failure(self, service, directory):
        directory.get_by_address.side_effect = RuntimeError("boom")
        with pytest.raises(DependencyError):
            service.verify_session(IdentityContext(address="0x" + "aa" * 20))

    def test_refresh_session(self, service, issuer, clock):
        identity = IdentityContext(address="0x" + "aa" * 20)
        first = service.refresh_session(identity)
        clock.advance(seconds=5)
        second = service.refresh_session(identity)

        assert second.expires_at > first.expires_at
        assert issuer.verify(second.token) == identity.address

    def test_refresh_signing_failure(self, registry, directory):
        issuer = Mock()
        issuer.refresh.side_effect = JWTError("signing failed")
        service = SiweAuthService(registry=registry, directory=directory, issuer=issuer)

        with pytest.raises(DependencyError):
            service.refresh_session(IdentityContext(address="0x" + "aa" * 20))

    def test_sign_out_accepts_anonymous(self, service):
        service.sign_out(ANONYMOUS)
        service.sign_out(IdentityContext(address="0x" + "aa" * 20))


class TestSqlAlchemyUserDirectory:
    """Tests for the users-table directory"""

    def test_upsert_creates_then_reuses(self, db_session):
        directory = SqlAlchemyUserDirectory(db_session)
        address = "0x" + "ab" * 20

        created = directory.upsert(address)
        again = directory.upsert(address)

        assert created.address == address
        assert created.last_login_at is not None
        assert again.address == address
        assert db_session.query(User).count() == 1

    def test_touch_last_login(self, db_session):
        directory = SqlAlchemyUserDirectory(db_session)
        address = "0x" + "ab" * 20
        user = directory.upsert(address)
        first_login = user.last_login_at

        directory.touch_last_login(address)
        db_session.refresh(user)

        assert user.last_login_at >= first_login

    def test_touch_unknown_address_is_noop(self, db_session):
        SqlAlchemyUserDirectory(db_session).touch_last_login("0x" + "ab" * 20)
        assert db_session.query(User).count() == 0

    def test_get_unknown_returns_none(self, db_session):
        assert SqlAlchemyUserDirectory(db_session).get_by_address("0x" + "ab" * 20) is None
