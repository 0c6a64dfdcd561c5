import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from catalog_api.db import CatalogFile
from catalog_api.exceptions import (
    ProductNotFoundError,
    StorageError,
    ValidationFailedError,
)
from catalog_api.logging_config import get_child_logger, tracer
from catalog_api.models.product import (
    ProductCreate,
    ProductQuery,
    ProductRecord,
    ProductUpdate,
    SortField,
    SortOrder,
)
from catalog_api.write_serializer import WriteSerializer

logger = get_child_logger("crud.catalog_store")

IMMUTABLE_FIELDS = ("id", "createdAt", "updatedAt", "created_at", "updated_at")


def normalize_category(category: str) -> str:
    """
    Normalize category for case-insensitive comparison.
    """
    return category.lower().strip()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def violated_fields(error: ValidationError) -> List[str]:
    """
    Names of the top-level fields a pydantic ValidationError complains about.
    """
    fields: List[str] = []
    for item in error.errors():
        loc = item.get("loc") or ()
        name = str(loc[0]) if loc else "__root__"
        if name not in fields:
            fields.append(name)
    return fields


def _validate(model, fields: Any, message: Optional[str] = None):
    if not isinstance(fields, Mapping):
        raise ValidationFailedError(["__root__"], "Product fields must be an object")
    immutable = [name for name in fields if name in IMMUTABLE_FIELDS]
    if immutable:
        raise ValidationFailedError(immutable, f"Fields cannot be set by callers: {', '.join(immutable)}")
    try:
        return model.model_validate(dict(fields))
    except ValidationError as e:
        raise ValidationFailedError(violated_fields(e), message) from e


def _matches(record: ProductRecord, query: ProductQuery) -> bool:
    if query.category is not None and normalize_category(record.category) != normalize_category(query.category):
        return False
    if query.q:
        term = query.q.strip().lower()
        haystack = (record.name, record.category, record.details)
        if term and not any(term in text.lower() for text in haystack):
            return False
    if query.min_price is not None and record.price < query.min_price:
        return False
    if query.max_price is not None and record.price > query.max_price:
        return False
    return True


class CatalogStore:
    """
    Owns the product collection.

    The collection is loaded once by open() and held in memory. Every
    mutation goes through the WriteSerializer, re-persists the whole
    collection and only then swaps the in-memory collection, so a failed
    write leaves both the file and the memory state unchanged. Reads never
    take the serializer.
    """

    def __init__(
        self,
        medium: CatalogFile,
        serializer: Optional[WriteSerializer] = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.medium = medium
        self.serializer = serializer or WriteSerializer("catalog")
        self._clock = clock
        self._id_factory = id_factory
        self._products: Dict[str, ProductRecord] = {}
        self.recovered_from_corruption = False
        self.skipped_entries = 0
        self.rejected_path: Optional[Path] = None

    @classmethod
    async def from_location(cls, location) -> "CatalogStore":
        store = cls(CatalogFile(location))
        await store.open()
        return store

    async def open(self) -> "CatalogStore":
        """
        Load the collection from the durable medium.

        A corrupted file never prevents startup: it is reset to an empty
        collection and recovered_from_corruption is set.
        """
        with tracer.start_as_current_span("catalog_open") as span:
            result = await self.medium.load()
            products: Dict[str, ProductRecord] = {}
            rejected: List[Any] = []
            for document in result.documents:
                try:
                    record = ProductRecord.model_validate(document)
                except ValidationError as e:
                    logger.warning(
                        "Skipping invalid stored product",
                        extra={"errors": e.errors(include_url=False), "path": str(self.medium.path)},
                    )
                    rejected.append(document)
                    continue
                if record.id in products:
                    logger.warning("Skipping duplicate stored product id", extra={"product_id": record.id})
                    rejected.append(document)
                    continue
                products[record.id] = record

            if rejected:
                self.rejected_path = await self.medium.set_aside(rejected)
                logger.warning(
                    f"Set aside {len(rejected)} stored entries that could not be loaded",
                    extra={"count": len(rejected), "rejected_path": str(self.rejected_path)},
                )

            self._products = products
            self.recovered_from_corruption = result.recovered_from_corruption
            self.skipped_entries = len(rejected)

            span.set_attribute("products.count", len(products))
            span.set_attribute("products.skipped", len(rejected))
            span.set_attribute("storage.recovered_from_corruption", result.recovered_from_corruption)
            logger.info(
                f"Loaded {len(products)} products",
                extra={
                    "count": len(products),
                    "skipped": len(rejected),
                    "path": str(self.medium.path),
                    "recovered_from_corruption": result.recovered_from_corruption,
                },
            )
            return self

    @property
    def degraded(self) -> bool:
        """True when the last load dropped stored data."""
        return self.recovered_from_corruption or self.skipped_entries > 0

    async def close(self) -> None:
        await self.serializer.close()

    def __len__(self) -> int:
        return len(self._products)

    async def list_products(self, query: Optional[ProductQuery] = None) -> List[ProductRecord]:
        """
        Return products, filtered and sorted.

        Without an explicit sort the newest products come first.
        """
        query = query or ProductQuery()
        with tracer.start_as_current_span("list_products") as span:
            snapshot = list(self._products.values())
            items = [record for record in snapshot if _matches(record, query)]

            if query.sort is None:
                items.sort(key=lambda r: r.created_at, reverse=True)
            else:
                reverse = query.order == SortOrder.DESC
                if query.sort == SortField.PRICE:
                    items.sort(key=lambda r: r.price, reverse=reverse)
                elif query.sort == SortField.NAME:
                    items.sort(key=lambda r: r.name.lower(), reverse=reverse)
                else:
                    items.sort(key=lambda r: r.created_at, reverse=reverse)

            if query.limit is not None:
                items = items[: query.limit]

            span.set_attribute("products.count", len(items))
            logger.debug(f"Listed {len(items)} products", extra={"count": len(items)})
            return items

    async def get_product(self, product_id: str) -> ProductRecord:
        """
        Retrieve a product by its ID.

        Raises:
            ProductNotFoundError: If the product doesn't exist
        """
        with tracer.start_as_current_span("get_product") as span:
            span.set_attribute("product.id", product_id)
            record = self._products.get(product_id)
            if record is None:
                span.set_attribute("error", True)
                span.set_attribute("error.type", "not_found")
                raise ProductNotFoundError(f"Product with ID '{product_id}' not found")
            return record

    async def create_product(self, fields: Mapping[str, Any]) -> ProductRecord:
        """
        Create a new product and persist it.

        Args:
            fields: name, category, price, image and optional details

        Returns:
            Newly created product with its assigned id and timestamps

        Raises:
            ValidationFailedError: If a required field is missing or invalid
            StorageError: If the catalog could not be persisted
        """
        with tracer.start_as_current_span("create_product") as span:
            product = _validate(ProductCreate, fields)

            async def apply() -> ProductRecord:
                now = self._clock()
                product_id = self._id_factory()
                while product_id in self._products:
                    product_id = self._id_factory()
                record = ProductRecord(
                    id=product_id,
                    created_at=now,
                    updated_at=now,
                    **product.model_dump(),
                )
                staged = dict(self._products)
                staged[record.id] = record
                await self._commit(staged)
                return record

            record = await self.serializer.submit(apply, label="create_product")
            span.set_attribute("product.id", record.id)
            span.set_attribute("product.category", record.category)
            logger.info(
                "Product created successfully",
                extra={"product_id": record.id, "category": record.category, "product_name": record.name},
            )
            return record

    async def update_product(self, product_id: str, fields: Mapping[str, Any]) -> ProductRecord:
        """
        Overwrite the supplied fields of an existing product.

        Fields not supplied are left as they were; updatedAt is refreshed.

        Raises:
            ValidationFailedError: If no fields are supplied or one is invalid
            ProductNotFoundError: If the product doesn't exist
            StorageError: If the catalog could not be persisted
        """
        with tracer.start_as_current_span("update_product") as span:
            span.set_attribute("product.id", product_id)
            updates = _validate(ProductUpdate, fields).model_dump(exclude_unset=True)
            if not updates:
                raise ValidationFailedError([], "No fields provided for update.")

            async def apply() -> ProductRecord:
                current = self._products.get(product_id)
                if current is None:
                    raise ProductNotFoundError(f"Product with ID '{product_id}' not found")
                updated_at = max(self._clock(), current.updated_at)
                record = current.model_copy(update={**updates, "updated_at": updated_at})
                staged = dict(self._products)
                staged[product_id] = record
                await self._commit(staged)
                return record

            try:
                record = await self.serializer.submit(apply, label="update_product")
            except ProductNotFoundError:
                span.set_attribute("error", True)
                span.set_attribute("error.type", "not_found")
                logger.warning("Product not found for update", extra={"product_id": product_id})
                raise
            logger.info(
                "Product updated successfully",
                extra={"product_id": product_id, "fields": sorted(updates)},
            )
            return record

    async def delete_product(self, product_id: str) -> None:
        """
        Delete a product and persist the change.

        Raises:
            ProductNotFoundError: If the product doesn't exist
            StorageError: If the catalog could not be persisted
        """
        with tracer.start_as_current_span("delete_product") as span:
            span.set_attribute("product.id", product_id)

            async def apply() -> None:
                if product_id not in self._products:
                    raise ProductNotFoundError(f"Product with ID '{product_id}' not found")
                staged = dict(self._products)
                del staged[product_id]
                await self._commit(staged)

            try:
                await self.serializer.submit(apply, label="delete_product")
            except ProductNotFoundError:
                span.set_attribute("error", True)
                span.set_attribute("error.type", "not_found")
                logger.warning("Product not found for delete", extra={"product_id": product_id})
                raise
            logger.info("Product deleted successfully", extra={"product_id": product_id})

    async def _commit(self, staged: Dict[str, ProductRecord]) -> None:
        # The in-memory swap happens only after the file swap succeeded.
        try:
            await self.medium.save(record.to_document() for record in staged.values())
        except StorageError:
            raise
        except Exception as e:
            logger.error("Unexpected error persisting catalog", extra={"error_type": type(e).__name__}, exc_info=True)
            raise StorageError(
                "An unexpected error occurred during storage operation.",
                original_exception=e,
            ) from e
        self._products = staged
