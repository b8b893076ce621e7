"""
SIWE Auth Service
Composes nonce registry, signature verifier, user directory and session
issuer into the sign-in protocol
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jose.exceptions import JWTError

from proofquest_auth.core.config import Settings, settings as default_settings
from proofquest_auth.core.deps import IdentityContext
from proofquest_auth.core.errors import (
    ChallengeError,
    DependencyError,
    MissingFieldsError,
    RequestValidationFailed,
    UserNotFoundError,
)
from proofquest_auth.core.security import SessionIssuer, SessionToken
from proofquest_auth.models.user import User
from proofquest_auth.services.signature import verify_siwe_signature
from proofquest_auth.services.siwe import check_challenge_fields, create_siwe_message
from proofquest_auth.services.siwe_nonce_store import NonceRegistry
from proofquest_auth.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NonceChallenge:
    nonce: str
    message: str
    domain: str
    expires_at: datetime


@dataclass(frozen=True)
class SignInResult:
    user: User
    session: SessionToken


class SiweAuthService:
    """Service implementing the challenge-response sign-in flow."""

    def __init__(
        self,
        registry: NonceRegistry,
        directory: UserDirectory,
        issuer: SessionIssuer,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry
        self.directory = directory
        self.issuer = issuer
        self.settings = settings or default_settings

    def request_nonce(
        self,
        address: str,
        domain: Optional[str] = None,
        chain_id: Optional[int] = None,
    ) -> NonceChallenge:
        """
        Issue a fresh nonce for an address and render the message to sign.

        Args:
            address: EVM address, any case
            domain: Domain shown in the message (defaults to settings.default_domain)
            chain_id: Chain ID embedded in the message (defaults to settings.default_chain_id)

        Returns:
            NonceChallenge with the nonce, message text, domain and expiry

        Raises:
            InvalidAddressError: if the address is malformed (nothing is stored)
            RequestValidationFailed: if the domain or chain ID is unusable (nothing is stored)
        """
        domain = domain or self.settings.default_domain
        chain_id = chain_id or self.settings.default_chain_id
        try:
            check_challenge_fields(domain, chain_id)
        except ValueError as err:
            raise RequestValidationFailed(str(err)) from err

        record = self.registry.issue(address)
        message = create_siwe_message(
            domain=domain,
            address=record.address,
            nonce=record.nonce,
            chain_id=chain_id,
            issued_at=record.issued_at,
            expiration_time=record.expires_at,
            statement=self.settings.siwe_statement,
        )
        return NonceChallenge(
            nonce=record.nonce,
            message=message.prepare_message(),
            domain=domain,
            expires_at=record.expires_at,
        )

    def sign_in(self, message: str, signature: str) -> SignInResult:
        """
        Exchange a signed challenge for a session token.

        Order is fixed: verify the signature, then consume the nonce, then
        resolve the account, then mint. The nonce is only consumed once the
        signature is known to be good, and once consumed it stays consumed
        even if the directory fails afterwards.

        Raises:
            MissingFieldsError: empty message or signature
            InvalidSignatureError, NonceNotFoundError, NonceMismatchError,
            NonceExpiredError: challenge rejected
            DependencyError: user directory failed after consumption
        """
        message = (message or "").strip()
        signature = (signature or "").strip()
        if not message or not signature:
            raise MissingFieldsError()

        try:
            verified = verify_siwe_signature(message, signature)
            self.registry.validate_and_consume(verified.address, verified.nonce)
        except ChallengeError as err:
            logger.warning("SIWE sign-in rejected: %s", err.code)
            raise

        user = self._resolve_user(verified.address)
        session = self.issuer.mint(verified.address)
        logger.info("Signed in %s", verified.address)
        return SignInResult(user=user, session=session)

    def _resolve_user(self, address: str) -> User:
        try:
            user = self.directory.get_by_address(address)
            if user is None:
                return self.directory.upsert(address)
            self.directory.touch_last_login(address)
            return user
        except Exception as err:
            logger.exception("User directory failed for %s after nonce consumption", address)
            raise DependencyError("Failed to resolve user account") from err

    def verify_session(self, identity: IdentityContext) -> User:
        try:
            user = self.directory.get_by_address(identity.address)
        except Exception as err:
            logger.exception("User directory lookup failed for %s", identity.address)
            raise DependencyError("Failed to lookup user") from err

        if user is None:
            raise UserNotFoundError()
        return user

    def refresh_session(self, identity: IdentityContext) -> SessionToken:
        try:
            return self.issuer.refresh(identity.address)
        except JWTError as err:
            logger.exception("Token refresh failed for %s", identity.address)
            raise DependencyError("Failed to refresh token") from err

    def sign_out(self, identity: IdentityContext) -> None:
        # tokens are stateless; the client just drops its copy
        if identity.is_authenticated:
            logger.info("Sign-out requested by %s", identity.address)
