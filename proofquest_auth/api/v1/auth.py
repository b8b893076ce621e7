from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from proofquest_auth.core.deps import CurrentIdentity, OptionalIdentity, get_db
from proofquest_auth.core.errors import error_body
from proofquest_auth.core.security import SessionIssuer, get_session_issuer
from proofquest_auth.schemas.auth import (
    NonceRequest,
    NonceResponse,
    RefreshResponse,
    SignInRequest,
    SignInResponse,
    SignOutResponse,
    UserOut,
    VerifyResponse,
)
from proofquest_auth.services.auth_service import SiweAuthService
from proofquest_auth.services.siwe_nonce_store import NonceRegistry, get_nonce_registry
from proofquest_auth.services.user_directory import SqlAlchemyUserDirectory

router = APIRouter(prefix="/auth")


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    registry: Annotated[NonceRegistry, Depends(get_nonce_registry)],
    issuer: Annotated[SessionIssuer, Depends(get_session_issuer)],
) -> SiweAuthService:
    return SiweAuthService(
        registry=registry,
        directory=SqlAlchemyUserDirectory(db),
        issuer=issuer,
    )


AuthServiceDep = Annotated[SiweAuthService, Depends(get_auth_service)]

_CHALLENGE_ERRORS = {
    401: {"description": "Invalid signature, or nonce not found / mismatched / expired",
          "content": {"application/json": {"example": error_body("NONCE_MISMATCH", "Nonce is invalid or expired")}}},
}
_SESSION_ERRORS = {
    401: {"description": "Missing, malformed, invalid or expired token",
          "content": {"application/json": {"example": error_body("TOKEN_EXPIRED", "Token has expired")}}},
}


@router.post("/nonce", response_model=NonceResponse, responses={400: {"description": "Invalid address"}})
def request_nonce(payload: NonceRequest, service: AuthServiceDep):
    """
    Issue a single-use challenge for an address.

    - **address**: EVM address to sign in with
    - **domain**: Domain to show in the message (optional)
    - **chainId**: Chain ID to embed in the message (optional)
    """
    challenge = service.request_nonce(
        payload.address,
        domain=payload.domain,
        chain_id=payload.chain_id,
    )
    return NonceResponse(
        nonce=challenge.nonce,
        message=challenge.message,
        domain=challenge.domain,
        expires_at=challenge.expires_at,
    )


@router.post(
    "/signin",
    response_model=SignInResponse,
    responses={**_CHALLENGE_ERRORS, 500: {"description": "User directory failure"}},
)
def sign_in(payload: SignInRequest, service: AuthServiceDep):
    """
    Exchange a signed SIWE message for a session token.

    - **message**: The exact message text returned by /auth/nonce
    - **signature**: Hex-encoded personal_sign signature of the message
    """
    result = service.sign_in(payload.message, payload.signature)
    return SignInResponse(
        token=result.session.token,
        user=UserOut.model_validate(result.user),
        expires_at=result.session.expires_at,
    )


@router.get("/verify", response_model=VerifyResponse, responses=_SESSION_ERRORS)
def verify_session(identity: CurrentIdentity, service: AuthServiceDep):
    user = service.verify_session(identity)
    return VerifyResponse(user=UserOut.model_validate(user))


@router.post("/refresh", response_model=RefreshResponse, responses=_SESSION_ERRORS)
def refresh_session(identity: CurrentIdentity, service: AuthServiceDep):
    session = service.refresh_session(identity)
    return RefreshResponse(token=session.token, expires_at=session.expires_at)


@router.post("/signout", response_model=SignOutResponse)
def sign_out(identity: OptionalIdentity, service: AuthServiceDep):
    # stateless tokens: nothing to revoke server-side
    service.sign_out(identity)
    return SignOutResponse()
