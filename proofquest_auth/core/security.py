from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, Optional

from jose import jwt
from jose.exceptions import JWTClaimsError, JWTError

from proofquest_auth.core.config import settings
from proofquest_auth.core.errors import (
    InvalidAddressError,
    TokenExpiredError,
    TokenInvalidError,
    TokenMalformedError,
    TokenMissingError,
)
from proofquest_auth.services.siwe import normalize_address

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionToken:
    token: str
    address: str
    issued_at: datetime
    expires_at: datetime


class SessionIssuer:
    """
    Mints and verifies self-contained session JWTs.

    Holds no state beyond its configuration: a token is checked by
    recomputing its HS256 signature and comparing claims, never by lookup.
    Expiry is evaluated against the injected clock rather than jose's
    built-in wall clock check.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 30 * 24 * 60 * 60,
        issuer: str = "proofquest",
        audience: str = "proofquest-users",
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self.secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self.issuer = issuer
        self.audience = audience
        self.clock = clock

    def mint(self, address: str) -> SessionToken:
        subject = normalize_address(address)
        issued_at = int(self.clock().timestamp())
        expires_at = issued_at + self.ttl_seconds

        claims = {
            "sub": subject,
            "iat": issued_at,
            "exp": expires_at,
            "iss": self.issuer,
            "aud": self.audience,
        }
        token = jwt.encode(claims, self.secret, algorithm=self.algorithm)
        return SessionToken(
            token=token,
            address=subject,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def refresh(self, address: str) -> SessionToken:
        # never extends the old token; the caller already proved a valid one
        return self.mint(address)

    def decode(self, token: Optional[str]) -> dict[str, Any]:
        if not token or not token.strip():
            raise TokenMissingError()

        try:
            jwt.get_unverified_header(token)
        except JWTError as err:
            raise TokenMalformedError() from err

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTClaimsError as err:
            raise TokenInvalidError("Token issuer or audience is invalid") from err
        except JWTError as err:
            raise TokenInvalidError() from err

        # jose skips the audience check when the claim is absent
        if claims.get("aud") != self.audience:
            raise TokenInvalidError("Token issuer or audience is invalid")
        if not isinstance(claims.get("exp"), int) or not isinstance(claims.get("iat"), int):
            raise TokenMalformedError()
        return claims

    def verify(self, token: Optional[str]) -> str:
        """Return the normalized address the token was minted for."""
        claims = self.decode(token)

        try:
            address = normalize_address(claims.get("sub"))
        except InvalidAddressError as err:
            raise TokenMalformedError("Token payload is invalid") from err

        if claims["exp"] <= int(self.clock().timestamp()):
            raise TokenExpiredError()
        return address

    def expires_at(self, token: str) -> datetime:
        return datetime.fromtimestamp(self.decode(token)["exp"], tz=timezone.utc)


@lru_cache
def get_session_issuer() -> SessionIssuer:
    return SessionIssuer(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_alg,
        ttl_seconds=settings.session_ttl_seconds,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )


def create_access_token(subject: str) -> str:
    return get_session_issuer().mint(subject).token
