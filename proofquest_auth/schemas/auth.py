from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NonceRequest(CamelModel):
    # format is checked by the registry so a bad address reports INVALID_ADDRESS
    address: str
    domain: Optional[str] = Field(default=None, min_length=1, pattern=r"^\S+$")
    chain_id: Optional[int] = Field(default=None, gt=0)


class NonceResponse(CamelModel):
    nonce: str
    message: str
    domain: str
    expires_at: datetime


class SignInRequest(CamelModel):
    message: str
    signature: str


class UserOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    address: str
    nickname: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


class SignInResponse(CamelModel):
    success: bool = True
    token: str
    user: UserOut
    expires_at: datetime


class VerifyResponse(CamelModel):
    success: bool = True
    user: UserOut
    is_authenticated: bool = True


class RefreshResponse(CamelModel):
    success: bool = True
    token: str
    expires_at: datetime


class SignOutResponse(CamelModel):
    success: bool = True
    message: str = "Signed out successfully"
