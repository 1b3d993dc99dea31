"""
Pydantic v2 schemas for catalog responses and cart state.

Catalog schemas are built from ORM rows (from_attributes=True) and dumped in
JSON mode before they reach the cache, so a cached value and a freshly queried
value have the same shape. Cart schemas use camelCase aliases because that is
the cookie's wire format.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


#
# Catalog
#

class CategorySummary(_ORMModel):
    slug: str
    name: str
    collection_id: str
    image_url: Optional[str] = None


class CollectionOut(_ORMModel):
    """A collection with its categories, ordered by category name."""
    id: str
    name: str
    slug: str
    categories: List[CategorySummary] = Field(default_factory=list)


class SubcategorySummary(_ORMModel):
    slug: str
    name: str
    subcollection_id: str
    image_url: Optional[str] = None


class SubcollectionSummary(_ORMModel):
    id: str
    name: str
    category_slug: str


class SubcollectionOut(SubcollectionSummary):
    subcategories: List[SubcategorySummary] = Field(default_factory=list)


class CategoryDetail(CategorySummary):
    """A category with subcollections and their subcategories nested."""
    subcollections: List[SubcollectionOut] = Field(default_factory=list)


class ProductOut(_ORMModel):
    slug: str
    name: str
    description: str
    price: Decimal = Field(..., description="Decimal dollars; serialized as a string")
    subcategory_slug: str
    image_url: Optional[str] = None


class SearchResult(ProductOut):
    to: str = Field(..., description="Navigation path /products/{category}/{subcategory}/{product}")


class CountOut(BaseModel):
    count: int


#
# Cart
#

class CartItem(BaseModel):
    """One cookie-resident cart line. Quantity is always a positive integer."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_slug: str = Field(..., alias="productSlug")
    quantity: int = Field(..., ge=1, strict=True)


class CartSubcategory(SubcategorySummary):
    subcollection: SubcollectionSummary


class DetailedCartItem(ProductOut):
    """A product row annotated with the quantity held in the cart."""
    quantity: int
    subcategory: CartSubcategory


class CartResponse(BaseModel):
    """Result of a cart mutation: an optional message plus the cart as written."""
    message: Optional[str] = None
    cart: List[CartItem] = Field(default_factory=list)
