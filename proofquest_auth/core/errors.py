"""
Authentication error taxonomy.

Every failure the auth core can produce is an AuthError subclass carrying a
stable machine code and an HTTP status. Handlers raise them, and
register_exception_handlers() turns them into JSON bodies of the form
{"error": <code>, "message": <text>} at the HTTP boundary.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base class for all auth failures."""

    code = "AUTH_ERROR"
    status_code = 401
    message = "Authentication failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)

    def headers(self) -> Optional[dict[str, str]]:
        return None


# 400: rejected before any state is touched

class RequestValidationFailed(AuthError):
    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request data"


class InvalidAddressError(RequestValidationFailed):
    code = "INVALID_ADDRESS"
    message = "Valid EVM address is required"


class MissingFieldsError(RequestValidationFailed):
    code = "MISSING_FIELDS"
    message = "Message and signature are required"


# 401: challenge / signature failures

class ChallengeError(AuthError):
    code = "CHALLENGE_ERROR"
    message = "Challenge verification failed"


class InvalidSignatureError(ChallengeError):
    code = "INVALID_SIGNATURE"
    message = "Signature verification failed"


class NonceMismatchError(ChallengeError):
    code = "NONCE_MISMATCH"
    message = "Nonce is invalid or expired"


class NonceNotFoundError(NonceMismatchError):
    """No live nonce exists for the address, so nothing can match."""

    code = "NONCE_NOT_FOUND"
    message = "Nonce is invalid or expired"


class NonceExpiredError(ChallengeError):
    code = "NONCE_EXPIRED"
    message = "Nonce has expired"


# 401: session token failures

class SessionError(AuthError):
    code = "UNAUTHENTICATED"
    message = "Invalid or expired token"

    def headers(self) -> Optional[dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class TokenMissingError(SessionError):
    code = "TOKEN_MISSING"
    message = "Authorization header with Bearer token is required"


class TokenExpiredError(SessionError):
    code = "TOKEN_EXPIRED"
    message = "Token has expired"


class TokenMalformedError(SessionError):
    code = "TOKEN_MALFORMED"
    message = "Token format is invalid"


class TokenInvalidError(SessionError):
    code = "TOKEN_INVALID"
    message = "Token signature is invalid"


# 404 / 500

class UserNotFoundError(AuthError):
    code = "USER_NOT_FOUND"
    status_code = 404
    message = "User account not found"


class DependencyError(AuthError):
    """A downstream collaborator failed; details stay in the server log."""

    code = "DEPENDENCY_ERROR"
    status_code = 500
    message = "Internal server error"


def error_body(code: str, message: str) -> dict[str, str]:
    return {"error": code, "message": message}


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message),
        headers=exc.headers(),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=RequestValidationFailed.status_code,
        content=error_body(RequestValidationFailed.code, RequestValidationFailed.message),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
