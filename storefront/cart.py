"""
Cookie-backed shopping cart.

The server keeps no cart state. The whole cart lives in the `cart` cookie as
a URL-encoded JSON array of {"productSlug": str, "quantity": int} and is
re-validated on every read. A cookie that fails validation is treated as an
empty cart and logged; it is never surfaced as an error.

Every mutation reads the cookie, computes the new list and rewrites the whole
cookie. Two concurrent mutations from the same browser therefore race and the
last response to arrive wins; no merge is attempted.
"""

import json
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from fastapi import Request, Response
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session, selectinload

from storefront.config import get_config
from storefront.logger import get_logger
from storefront.models import Product, Subcategory
from storefront.schemas import CartItem, CartSubcategory, DetailedCartItem, ProductOut

logger = get_logger("cart")

CART_COOKIE_NAME = "cart"
CART_MAX_AGE_SECONDS = 60 * 60 * 24 * 7  # 1 week

_cart_adapter = TypeAdapter(List[CartItem])


#
# Cookie codec
#

def parse_cart(raw: Optional[str]) -> List[CartItem]:
    """Decode and validate a cookie value. Missing or invalid -> []."""
    if not raw:
        return []
    try:
        items = _cart_adapter.validate_json(unquote(raw))
    except ValidationError as e:
        logger.error("Failed to parse cart cookie: %s", e.errors(include_url=False))
        return []
    return _merge_duplicates(items)


def _merge_duplicates(items: List[CartItem]) -> List[CartItem]:
    """Collapse repeated slugs (hand-edited cookies) into one line, keeping first position."""
    merged: Dict[str, CartItem] = {}
    for item in items:
        existing = merged.get(item.product_slug)
        if existing is None:
            merged[item.product_slug] = item
        else:
            merged[item.product_slug] = existing.model_copy(
                update={"quantity": existing.quantity + item.quantity}
            )
    return list(merged.values())


def serialize_cart(items: List[CartItem]) -> str:
    payload = [item.model_dump(by_alias=True) for item in items]
    return quote(json.dumps(payload, separators=(",", ":")), safe="")


def read_cart(request: Request) -> List[CartItem]:
    return parse_cart(request.cookies.get(CART_COOKIE_NAME))


def write_cart(response: Response, items: List[CartItem]) -> None:
    """Rewrite the whole cart cookie."""
    response.set_cookie(
        key=CART_COOKIE_NAME,
        value=serialize_cart(items),
        max_age=CART_MAX_AGE_SECONDS,
        httponly=True,
        secure=get_config().is_production,
        samesite="strict",
    )


#
# Pure transitions
#

def add_item(cart: List[CartItem], product_slug: str) -> List[CartItem]:
    """Increment the line for product_slug, or append it with quantity 1."""
    if any(item.product_slug == product_slug for item in cart):
        return [
            item.model_copy(update={"quantity": item.quantity + 1})
            if item.product_slug == product_slug
            else item
            for item in cart
        ]
    return [*cart, CartItem(product_slug=product_slug, quantity=1)]


def remove_item(cart: List[CartItem], product_slug: str) -> List[CartItem]:
    return [item for item in cart if item.product_slug != product_slug]


#
# Request-level operations
#

def add_to_cart(request: Request, response: Response, product_slug: Optional[str]) -> List[CartItem]:
    """
    Add one unit of product_slug to the cookie cart and return the new cart.

    The catalog is not consulted; an unknown slug is accepted here and is
    dropped later by detailed_cart(). A missing slug is a no-op.
    """
    cart = read_cart(request)
    if not product_slug:
        return cart
    new_cart = add_item(cart, product_slug)
    write_cart(response, new_cart)
    logger.info("cart: method=add_to_cart product_slug=%s lines=%d", product_slug, len(new_cart))
    return new_cart


def remove_from_cart(request: Request, response: Response, product_slug: Optional[str]) -> List[CartItem]:
    """Drop product_slug from the cookie cart. Missing or absent slug is a no-op."""
    cart = read_cart(request)
    if not product_slug or all(item.product_slug != product_slug for item in cart):
        return cart
    new_cart = remove_item(cart, product_slug)
    write_cart(response, new_cart)
    logger.info("cart: method=remove_from_cart product_slug=%s lines=%d", product_slug, len(new_cart))
    return new_cart


def detailed_cart(db: Session, cart: List[CartItem]) -> List[DetailedCartItem]:
    """
    Join cart lines against the product table in a single IN query.

    Lines are returned in cart order with subcategory -> subcollection nested.
    Lines whose product no longer exists are left out.
    """
    if not cart:
        return []
    slugs = [item.product_slug for item in cart]
    products = (
        db.query(Product)
        .options(selectinload(Product.subcategory).selectinload(Subcategory.subcollection))
        .filter(Product.slug.in_(slugs))
        .all()
    )
    by_slug = {product.slug: product for product in products}

    detailed = []
    for item in cart:
        product = by_slug.get(item.product_slug)
        if product is None:
            continue
        detailed.append(
            DetailedCartItem(
                **ProductOut.model_validate(product).model_dump(),
                quantity=item.quantity,
                subcategory=CartSubcategory.model_validate(product.subcategory),
            )
        )
    return detailed


def reconcile_cart(
    request: Request, response: Response, db: Session
) -> List[DetailedCartItem]:
    """
    detailed_cart() for the request's cookie, pruning orphaned lines.

    When some cart lines reference products that are gone, the cookie is
    rewritten without them so the raw cart matches the detailed view.
    """
    cart = read_cart(request)
    detailed = detailed_cart(db, cart)
    if len(detailed) != len(cart):
        present = {line.slug for line in detailed}
        orphaned = [item.product_slug for item in cart if item.product_slug not in present]
        write_cart(response, [item for item in cart if item.product_slug in present])
        logger.info("cart: method=reconcile_cart pruned=%s", orphaned)
    return detailed
