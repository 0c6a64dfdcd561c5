from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

ADMIN_ROLE = "admin"


class DenyReason(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    EXPIRED = "expired"


class AdminCredentials(BaseModel):
    """
    Credentials extracted from a request by the transport layer.
    """

    shared_secret: Optional[str] = None
    bearer_token: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def __repr__(self) -> str:
        return (
            f"AdminCredentials(shared_secret={'***' if self.shared_secret else None}, "
            f"bearer_token={'***' if self.bearer_token else None})"
        )


class AdminIdentity(BaseModel):
    subject: str
    role: str = ADMIN_ROLE
    scheme: str  # which credential scheme granted authority

    model_config = ConfigDict(frozen=True)


class Denied(BaseModel):
    reason: DenyReason
    scheme: Optional[str] = None

    model_config = ConfigDict(frozen=True)


AuthorizationResult = Union[AdminIdentity, Denied]


class TokenClaims(BaseModel):
    subject: str
    role: str
    issued_at: datetime
    expires_at: datetime

    model_config = ConfigDict(frozen=True)


class IssuedToken(BaseModel):
    """
    Response model for a freshly issued bearer token.
    """

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: datetime


class LoginRequest(BaseModel):
    email: str
    password: str

    model_config = ConfigDict(extra="forbid")
