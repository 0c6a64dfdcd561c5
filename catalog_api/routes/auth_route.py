from fastapi import APIRouter, Depends, HTTPException, status

from catalog_api.auth.admin_guard import AdminGuard
from catalog_api.deps import get_admin_guard
from catalog_api.exceptions import AdminDeniedError, TokenIssuanceUnavailableError
from catalog_api.logging_config import get_child_logger
from catalog_api.models.auth import Denied, IssuedToken, LoginRequest

logger = get_child_logger("routes.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=IssuedToken)
async def login(
    payload: LoginRequest,
    guard: AdminGuard = Depends(get_admin_guard),
):
    try:
        result = await guard.login(payload.email, payload.password)
    except TokenIssuanceUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(result, Denied):
        raise AdminDeniedError(result.reason, "Invalid credentials")
    return result
