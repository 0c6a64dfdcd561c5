from typing import List, Optional, Union

from catalog_api.auth.authenticators import (
    Authenticator,
    build_authenticators,
    secret_authenticator,
    token_service_from_settings,
)
from catalog_api.auth.token_service import TokenService
from catalog_api.config import CatalogSettings
from catalog_api.exceptions import TokenIssuanceUnavailableError
from catalog_api.logging_config import get_child_logger, tracer
from catalog_api.models.auth import (
    ADMIN_ROLE,
    AdminCredentials,
    AdminIdentity,
    AuthorizationResult,
    Denied,
    DenyReason,
    IssuedToken,
)

logger = get_child_logger("auth.admin_guard")


class AdminGuard:
    """
    Decides whether a request carries administrative authority.

    Authenticators are tried in configured precedence order; the first one
    whose credential is present in the request decides the outcome. There is
    no fallthrough to a later scheme after a denial.
    """

    def __init__(
        self,
        settings: CatalogSettings,
        token_service: Optional[TokenService] = None,
    ):
        settings.require_admin_credentials()
        self.settings = settings
        self.token_service = token_service
        self.authenticators: List[Authenticator] = build_authenticators(settings, token_service)
        self._login_check = secret_authenticator(settings)
        logger.info(
            "Admin guard ready",
            extra={"schemes": [a.scheme.value for a in self.authenticators]},
        )

    @classmethod
    def from_settings(cls, settings: CatalogSettings) -> "AdminGuard":
        """
        Raises:
            MisconfiguredError: If no admin credential source is configured
        """
        return cls(settings, token_service_from_settings(settings))

    async def authorize(self, credentials: AdminCredentials) -> AuthorizationResult:
        with tracer.start_as_current_span("authorize_admin") as span:
            result = await self._resolve(credentials)
            if isinstance(result, Denied):
                span.set_attribute("auth.denied", result.reason.value)
                logger.info(
                    "Admin authorization denied",
                    extra={"reason": result.reason.value, "scheme": result.scheme},
                )
            else:
                span.set_attribute("auth.scheme", result.scheme)
            return result

    async def _resolve(self, credentials: AdminCredentials) -> AuthorizationResult:
        for authenticator in self.authenticators:
            if authenticator.presented(credentials):
                return await authenticator.authenticate(credentials)
        if credentials.shared_secret or credentials.bearer_token:
            # only credentials for schemes this server does not accept
            return Denied(reason=DenyReason.INVALID_CREDENTIAL)
        return Denied(reason=DenyReason.MISSING_CREDENTIAL)

    async def login(self, email: str, password: str) -> Union[IssuedToken, Denied]:
        """
        Exchange the admin email and shared secret for a bearer token.

        Raises:
            TokenIssuanceUnavailableError: If no signing key is configured
        """
        if self.token_service is None:
            raise TokenIssuanceUnavailableError("Token issuance is not configured")
        result = await self.check_login(email, password)
        if isinstance(result, Denied):
            return result
        return self.token_service.issue(result.subject, ADMIN_ROLE)

    async def check_login(self, email: str, password: str) -> AuthorizationResult:
        email = (email or "").strip().lower()
        if self._login_check is None or not email or not password:
            return Denied(reason=DenyReason.INVALID_CREDENTIAL)
        if self.settings.admin_email and email != self.settings.admin_email:
            # same work as a matching email
            await self._login_check.matches(password)
            return Denied(reason=DenyReason.INVALID_CREDENTIAL)
        if not await self._login_check.matches(password):
            return Denied(reason=DenyReason.INVALID_CREDENTIAL)
        return AdminIdentity(subject=email, role=ADMIN_ROLE, scheme="login")
