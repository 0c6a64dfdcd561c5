from fastapi import APIRouter, Depends

from catalog_api.crud.catalog_store import CatalogStore
from catalog_api.deps import get_catalog_store

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(store: CatalogStore = Depends(get_catalog_store)):
    return {
        "status": "degraded" if store.degraded else "ok",
        "products": len(store),
        "recovered_from_corruption": store.recovered_from_corruption,
        "skipped_entries": store.skipped_entries,
        "pending_writes": store.serializer.pending,
    }
