from .auth import (
    NonceRequest,
    NonceResponse,
    SignInRequest,
    SignInResponse,
    UserOut,
    VerifyResponse,
    RefreshResponse,
    SignOutResponse,
)

__all__ = [
    "NonceRequest",
    "NonceResponse",
    "SignInRequest",
    "SignInResponse",
    "UserOut",
    "VerifyResponse",
    "RefreshResponse",
    "SignOutResponse",
]
