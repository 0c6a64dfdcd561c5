from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from catalog_api.auth.admin_guard import AdminGuard
from catalog_api.config import CatalogSettings
from catalog_api.crud.catalog_store import CatalogStore
from catalog_api.exceptions import AdminDeniedError
from catalog_api.logging_config import logger, tracer
from catalog_api.routes.auth_route import router as auth_router
from catalog_api.routes.health_route import router as health_router
from catalog_api.routes.product_route import router as product_router


def create_app(settings: Optional[CatalogSettings] = None) -> FastAPI:
    """
    Build the catalog API.

    Configuration is resolved when the app starts, not at import time. A
    missing admin credential configuration aborts startup with
    MisconfiguredError.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or CatalogSettings.from_env()
        guard = AdminGuard.from_settings(resolved)
        store = await CatalogStore.from_location(resolved.storage_location)
        app.state.settings = resolved
        app.state.admin_guard = guard
        app.state.catalog_store = store
        logger.info(
            "Catalog API started",
            extra={"storage_location": resolved.storage_location, "products": len(store)},
        )
        try:
            yield
        finally:
            await store.close()

    app = FastAPI(title="Catalog API", version="1.0.0", lifespan=lifespan)

    @app.exception_handler(AdminDeniedError)
    async def handle_admin_denied(request: Request, exc: AdminDeniedError):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc), "reason": exc.reason.value},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        with tracer.start_as_current_span("handle_unexpected_error") as span:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(exc).__name__)
            logger.error(
                "Unhandled error",
                extra={"error_type": type(exc).__name__, "path": request.url.path},
                exc_info=exc,
            )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An unexpected internal server error occurred."},
        )

    app.include_router(product_router)
    app.include_router(auth_router)
    app.include_router(health_router)
    return app
