import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SortField(str, Enum):
    PRICE = "price"
    NAME = "name"
    CREATED_AT = "createdAt"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _required_text(value):
    if not isinstance(value, str):
        raise ValueError("must be text")
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _price(value):
    # bool is an int subclass; True is not a price
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    try:
        as_float = float(value)
    except OverflowError:
        raise ValueError("must be a finite number")
    if not math.isfinite(as_float):
        raise ValueError("must be a finite number")
    if as_float < 0:
        raise ValueError("must not be negative")
    return as_float


class ProductCreate(BaseModel):
    """
    Fields a client needs to provide to create a product.
    """

    name: str
    category: str
    price: float
    image: str  # URL, data URI or bare filename
    details: str = ""

    model_config = ConfigDict(extra="forbid")

    @field_validator("name", "category", "image", mode="before")
    @classmethod
    def check_text(cls, value):
        return _required_text(value)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, value):
        return _price(value)

    @field_validator("details", mode="before")
    @classmethod
    def check_details(cls, value):
        if not isinstance(value, str):
            raise ValueError("must be text")
        return value.strip()


class ProductUpdate(BaseModel):
    """
    Fields a client can provide to update a product.

    Only the fields present in the payload are validated and applied.
    """

    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None
    details: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("name", "category", "image", mode="before")
    @classmethod
    def check_text(cls, value):
        return _required_text(value)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, value):
        return _price(value)

    @field_validator("details", mode="before")
    @classmethod
    def check_details(cls, value):
        if not isinstance(value, str):
            raise ValueError("must be text")
        return value.strip()


class ProductRecord(BaseModel):
    """
    A stored product: client fields plus store-assigned id and timestamps.

    Records are frozen so the cached collection cannot be changed through a
    reference handed to a caller.
    """

    id: str
    name: str
    category: str
    price: float = Field(ge=0)
    image: str
    details: str = ""
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @field_validator("name", "category", "image")
    @classmethod
    def not_blank(cls, value):
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_document(self) -> dict:
        """Serialize with camelCase keys, as stored and as returned to clients."""
        return self.model_dump(mode="json", by_alias=True)


class ProductQuery(BaseModel):
    """
    Filter and sort options for listing products.
    """

    category: Optional[str] = None
    q: Optional[str] = None  # free text over name, category and details
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    sort: Optional[SortField] = None
    order: SortOrder = SortOrder.ASC
    limit: Optional[int] = Field(default=None, ge=1, le=500)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_price_range(self):
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must not exceed max_price")
        return self
