from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from proofquest_auth.core.errors import SessionError, TokenMissingError
from proofquest_auth.core.security import SessionIssuer, get_session_issuer
from proofquest_auth.db.session import get_db

__all__ = [
    "IdentityContext",
    "get_db",
    "get_identity",
    "get_optional_identity",
    "CurrentIdentity",
    "OptionalIdentity",
]

logger = logging.getLogger(__name__)

# auto_error=False: a missing header is reported through our own error taxonomy
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class IdentityContext:
    """Verified caller identity for the lifetime of one request."""

    address: str
    is_authenticated: bool = True


ANONYMOUS = IdentityContext(address="", is_authenticated=False)


def get_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    issuer: Annotated[SessionIssuer, Depends(get_session_issuer)],
) -> IdentityContext:
    """Gate a route behind a valid bearer session token.

    Raises:
        TokenMissingError: no bearer credential on the request
        SessionError: the token failed verification
    """
    if credentials is None or not credentials.credentials:
        raise TokenMissingError()

    try:
        address = issuer.verify(credentials.credentials)
    except SessionError as err:
        logger.info("Rejected session token: %s", err.code)
        raise
    return IdentityContext(address=address)


def get_optional_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    issuer: Annotated[SessionIssuer, Depends(get_session_issuer)],
) -> IdentityContext:
    """Like get_identity, but falls back to an anonymous context instead of failing."""
    if credentials is None or not credentials.credentials:
        return ANONYMOUS
    try:
        return IdentityContext(address=issuer.verify(credentials.credentials))
    except SessionError:
        return ANONYMOUS


CurrentIdentity = Annotated[IdentityContext, Depends(get_identity)]
OptionalIdentity = Annotated[IdentityContext, Depends(get_optional_identity)]
