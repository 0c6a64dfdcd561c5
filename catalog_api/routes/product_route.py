from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from pydantic import ValidationError

from catalog_api.crud.catalog_store import CatalogStore, violated_fields
from catalog_api.deps import get_catalog_store, require_admin
from catalog_api.exceptions import (
    ProductNotFoundError,
    StorageError,
    ValidationFailedError,
)
from catalog_api.logging_config import get_child_logger, tracer
from catalog_api.models.auth import AdminIdentity
from catalog_api.models.product import ProductQuery

logger = get_child_logger("routes.product")

router = APIRouter(prefix="/products", tags=["products"])


def _validation_failed(e: ValidationFailedError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": str(e), "fields": e.fields},
    )


def _storage_failed(e: StorageError) -> HTTPException:
    logger.error(f"Storage error: {e}", exc_info=e.original_exception)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="A storage error occurred.",
    )


@router.get("")
async def get_products(
    category: Optional[str] = Query(None, title="Only products in this category"),
    q: Optional[str] = Query(None, title="Free text matched against name, category and details"),
    min_price: Optional[float] = Query(None, title="Lowest price to include"),
    max_price: Optional[float] = Query(None, title="Highest price to include"),
    sort: Optional[str] = Query(None, title="price, name or createdAt"),
    order: str = Query("asc", title="asc or desc"),
    limit: Optional[int] = Query(None, title="Maximum number of items to return"),
    store: CatalogStore = Depends(get_catalog_store),
) -> List[Dict[str, Any]]:
    with tracer.start_as_current_span("api_get_products") as span:
        try:
            query = ProductQuery(
                category=category,
                q=q,
                min_price=min_price,
                max_price=max_price,
                sort=sort,
                order=order,
                limit=limit,
            )
        except ValidationError as e:
            fields = violated_fields(e)
            if fields == ["__root__"]:
                fields = ["min_price", "max_price"]
            raise _validation_failed(ValidationFailedError(fields, "Invalid list parameters"))

        result = await store.list_products(query)
        span.set_attribute("products.count", len(result))
        logger.info(
            f"Successfully retrieved {len(result)} products",
            extra={"count": len(result), "category": category},
        )
        return [record.to_document() for record in result]


@router.get("/{product_id}")
async def get_product(
    product_id: str = Path(..., title="The ID of the product to retrieve"),
    store: CatalogStore = Depends(get_catalog_store),
) -> Dict[str, Any]:
    try:
        record = await store.get_product(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return record.to_document()


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_new_product(
    fields: Dict[str, Any] = Body(..., description="Product information to create"),
    store: CatalogStore = Depends(get_catalog_store),
    admin: AdminIdentity = Depends(require_admin),
) -> Dict[str, Any]:
    try:
        record = await store.create_product(fields)
    except ValidationFailedError as e:
        raise _validation_failed(e)
    except StorageError as e:
        raise _storage_failed(e)
    logger.info("Product created by admin", extra={"product_id": record.id, "admin": admin.subject})
    return record.to_document()


@router.put("/{product_id}")
@router.patch("/{product_id}")
async def update_existing_product(
    fields: Dict[str, Any] = Body(..., description="Fields to overwrite"),
    product_id: str = Path(..., title="The ID of the product to update"),
    store: CatalogStore = Depends(get_catalog_store),
    admin: AdminIdentity = Depends(require_admin),
) -> Dict[str, Any]:
    try:
        record = await store.update_product(product_id, fields)
    except ValidationFailedError as e:
        raise _validation_failed(e)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StorageError as e:
        raise _storage_failed(e)
    return record.to_document()


@router.delete("/{product_id}")
async def delete_existing_product(
    product_id: str = Path(..., title="The ID of the product to delete"),
    store: CatalogStore = Depends(get_catalog_store),
    admin: AdminIdentity = Depends(require_admin),
) -> Dict[str, bool]:
    try:
        await store.delete_product(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StorageError as e:
        raise _storage_failed(e)
    return {"success": True}
