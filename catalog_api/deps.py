from typing import Optional

from fastapi import Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from catalog_api.auth.admin_guard import AdminGuard
from catalog_api.crud.catalog_store import CatalogStore
from catalog_api.exceptions import AdminDeniedError
from catalog_api.models.auth import AdminCredentials, AdminIdentity, Denied

ADMIN_SECRET_HEADER = "X-Admin-Secret"
ADMIN_PASSWORD_HEADER = "X-Admin-Password"

admin_secret_scheme = APIKeyHeader(
    name=ADMIN_SECRET_HEADER,
    auto_error=False,
    scheme_name="AdminSecretHeader",
    description="Admin shared secret",
)
admin_password_scheme = APIKeyHeader(
    name=ADMIN_PASSWORD_HEADER,
    auto_error=False,
    scheme_name="AdminPasswordHeader",
    description="Alias of X-Admin-Secret",
)
bearer_scheme = HTTPBearer(
    auto_error=False,
    scheme_name="AdminBearerToken",
    description="Token from POST /auth/login",
)


def get_catalog_store(request: Request) -> CatalogStore:
    return request.app.state.catalog_store


def get_admin_guard(request: Request) -> AdminGuard:
    return request.app.state.admin_guard


async def require_admin(
    request: Request,
    admin_secret: Optional[str] = Security(admin_secret_scheme),
    admin_password: Optional[str] = Security(admin_password_scheme),
    bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> AdminIdentity:
    """Resolve request credentials through the AdminGuard or raise AdminDeniedError."""
    credentials = AdminCredentials(
        shared_secret=admin_secret or admin_password,
        bearer_token=bearer.credentials if bearer else None,
    )
    result = await get_admin_guard(request).authorize(credentials)
    if isinstance(result, Denied):
        raise AdminDeniedError(result.reason)
    return result
