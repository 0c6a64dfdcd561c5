import asyncio
import hmac
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

import bcrypt

from catalog_api.auth.token_service import TokenService
from catalog_api.config import BEARER_TOKEN, SHARED_SECRET, CatalogSettings
from catalog_api.exceptions import MisconfiguredError, TokenError, TokenExpiredError
from catalog_api.logging_config import get_child_logger
from catalog_api.models.auth import (
    ADMIN_ROLE,
    AdminCredentials,
    AdminIdentity,
    AuthorizationResult,
    Denied,
    DenyReason,
)

logger = get_child_logger("auth.authenticators")

DEFAULT_ADMIN_SUBJECT = "admin"


class CredentialScheme(str, Enum):
    SHARED_SECRET = "shared_secret"
    HASHED_SECRET = "hashed_secret"
    BEARER_TOKEN = "bearer_token"


def hash_secret(secret: str, rounds: int = 12) -> str:
    """Produce a value suitable for ADMIN_SECRET_HASH."""
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


class Authenticator(ABC):
    """
    One credential scheme able to grant admin authority.
    """

    scheme: CredentialScheme

    @abstractmethod
    def presented(self, credentials: AdminCredentials) -> bool:
        """Whether the request carries a credential for this scheme."""

    @abstractmethod
    async def authenticate(self, credentials: AdminCredentials) -> AuthorizationResult:
        """Decide on a presented credential."""


class _SecretAuthenticator(Authenticator):
    def __init__(self, subject: str):
        self.subject = subject

    def presented(self, credentials: AdminCredentials) -> bool:
        return bool(credentials.shared_secret)

    @abstractmethod
    async def matches(self, secret: str) -> bool:
        """Compare a presented secret with the configured one."""

    async def authenticate(self, credentials: AdminCredentials) -> AuthorizationResult:
        if await self.matches(credentials.shared_secret):
            return AdminIdentity(subject=self.subject, role=ADMIN_ROLE, scheme=self.scheme.value)
        return Denied(reason=DenyReason.INVALID_CREDENTIAL, scheme=self.scheme.value)


class SharedSecretAuthenticator(_SecretAuthenticator):
    """Plaintext shared secret, compared in constant time."""

    scheme = CredentialScheme.SHARED_SECRET

    def __init__(self, secret: str, subject: str = DEFAULT_ADMIN_SUBJECT):
        super().__init__(subject)
        self._secret = secret.encode("utf-8")

    async def matches(self, secret: str) -> bool:
        return hmac.compare_digest(secret.encode("utf-8"), self._secret)


class HashedSecretAuthenticator(_SecretAuthenticator):
    """Shared secret checked against a salted bcrypt hash."""

    scheme = CredentialScheme.HASHED_SECRET

    def __init__(self, secret_hash: str, subject: str = DEFAULT_ADMIN_SUBJECT):
        super().__init__(subject)
        self._hash = secret_hash.encode("utf-8")

    async def matches(self, secret: str) -> bool:
        # bcrypt is deliberately slow; keep it off the event loop
        return await asyncio.to_thread(self._checkpw, secret.encode("utf-8"))

    def _checkpw(self, secret: bytes) -> bool:
        try:
            return bcrypt.checkpw(secret, self._hash)
        except ValueError:
            # bcrypt refuses secrets longer than 72 bytes
            return False


class BearerTokenAuthenticator(Authenticator):
    """Signed token issued by TokenService carrying the admin role."""

    scheme = CredentialScheme.BEARER_TOKEN

    def __init__(self, token_service: TokenService, admin_email: Optional[str] = None):
        self.token_service = token_service
        self.admin_email = admin_email.lower() if admin_email else None

    def presented(self, credentials: AdminCredentials) -> bool:
        return bool(credentials.bearer_token)

    async def authenticate(self, credentials: AdminCredentials) -> AuthorizationResult:
        try:
            claims = self.token_service.verify(credentials.bearer_token)
        except TokenExpiredError:
            return Denied(reason=DenyReason.EXPIRED, scheme=self.scheme.value)
        except TokenError as e:
            logger.info("Bearer token rejected", extra={"error_type": type(e).__name__})
            return Denied(reason=DenyReason.INVALID_CREDENTIAL, scheme=self.scheme.value)

        if claims.role != ADMIN_ROLE:
            return Denied(reason=DenyReason.INVALID_CREDENTIAL, scheme=self.scheme.value)
        if self.admin_email and claims.subject.lower() != self.admin_email:
            return Denied(reason=DenyReason.INVALID_CREDENTIAL, scheme=self.scheme.value)
        return AdminIdentity(subject=claims.subject, role=claims.role, scheme=self.scheme.value)


def secret_authenticator(settings: CatalogSettings) -> Optional[_SecretAuthenticator]:
    """
    The shared-secret authenticator for the configured secret, preferring
    the hash over the plaintext value.
    """
    subject = settings.admin_email or DEFAULT_ADMIN_SUBJECT
    if settings.admin_secret_hash is not None:
        return HashedSecretAuthenticator(settings.admin_secret_hash.get_secret_value(), subject)
    if settings.admin_secret is not None:
        return SharedSecretAuthenticator(settings.admin_secret.get_secret_value(), subject)
    return None


def token_service_from_settings(settings: CatalogSettings) -> Optional[TokenService]:
    if settings.token_signing_key is None:
        return None
    return TokenService(settings.token_signing_key.get_secret_value(), settings.token_ttl)


def build_authenticators(
    settings: CatalogSettings, token_service: Optional[TokenService] = None
) -> List[Authenticator]:
    """
    Ordered authenticator chain following settings.auth_precedence.

    Schemes without configuration are left out.

    Raises:
        MisconfiguredError: If no listed scheme is configured
    """
    chain: List[Authenticator] = []
    for scheme in settings.auth_precedence:
        if scheme == SHARED_SECRET:
            authenticator = secret_authenticator(settings)
            if authenticator is not None:
                chain.append(authenticator)
        elif scheme == BEARER_TOKEN and token_service is not None:
            chain.append(BearerTokenAuthenticator(token_service, settings.admin_email))
    if not chain:
        raise MisconfiguredError(
            "AUTH_PRECEDENCE does not name any configured credential scheme; "
            "refusing to start without admin authorization"
        )
    return chain
