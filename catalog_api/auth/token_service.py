import re
import time
from datetime import datetime, timezone
from typing import Callable

from itsdangerous import BadPayload, BadSignature, URLSafeSerializer

from catalog_api.exceptions import (
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureError,
)
from catalog_api.logging_config import get_child_logger
from catalog_api.models.auth import IssuedToken, TokenClaims

logger = get_child_logger("auth.token_service")

TOKEN_SALT = "catalog-admin-token-v1"
_TOKEN_SHAPE = re.compile(r"^\.?[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+$")


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class TokenService:
    """
    Issues and verifies short-lived signed admin tokens.

    Tokens are stateless: the signed payload carries subject, role, issue and
    expiry times, and nothing is kept server-side, so a token stays valid
    until it expires.
    """

    def __init__(self, signing_key: str, ttl_seconds: int, clock: Callable[[], float] = time.time):
        if not signing_key:
            raise ValueError("signing_key must not be empty")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._serializer = URLSafeSerializer(signing_key, salt=TOKEN_SALT)

    def issue(self, subject: str, role: str) -> IssuedToken:
        issued_at = int(self._clock())
        expires_at = issued_at + self.ttl_seconds
        token = self._serializer.dumps(
            {"sub": subject, "role": role, "iat": issued_at, "exp": expires_at}
        )
        logger.info("Issued token", extra={"subject": subject, "role": role, "expires_at": expires_at})
        return IssuedToken(
            access_token=token,
            expires_in=self.ttl_seconds,
            expires_at=_to_datetime(expires_at),
        )

    def verify(self, token: str) -> TokenClaims:
        """
        Check a token's signature and expiry.

        Raises:
            TokenMalformedError: If the token is not a well-formed signed payload
            TokenSignatureError: If the signature does not match the key
            TokenExpiredError: If the token is authentic but past its expiry
        """
        if not isinstance(token, str) or not _TOKEN_SHAPE.match(token.strip()):
            raise TokenMalformedError("Token is not a signed payload")
        try:
            payload = self._serializer.loads(token.strip())
        except BadPayload as e:
            raise TokenMalformedError("Token payload could not be decoded") from e
        except BadSignature as e:
            raise TokenSignatureError("Token signature is invalid") from e

        if not isinstance(payload, dict):
            raise TokenMalformedError("Token payload must be an object")
        subject = payload.get("sub")
        role = payload.get("role")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if not (
            isinstance(subject, str) and subject
            and isinstance(role, str) and role
            and isinstance(issued_at, int) and not isinstance(issued_at, bool)
            and isinstance(expires_at, int) and not isinstance(expires_at, bool)
        ):
            raise TokenMalformedError("Token is missing required claims")

        if self._clock() >= expires_at:
            raise TokenExpiredError("Token has expired")

        return TokenClaims(
            subject=subject,
            role=role,
            issued_at=_to_datetime(issued_at),
            expires_at=_to_datetime(expires_at),
        )
