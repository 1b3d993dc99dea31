"""
Catalog query layer.

Every operation is a read over the catalog tables wrapped in with_cache().
Producers return JSON-ready values (dicts, lists, ints) so that a cache hit and
a fresh query are indistinguishable to callers. Cache input shapes use the
camelCase field names of the public API, e.g. {"productSlug": "..."}.
"""

import re
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, selectinload

from storefront.cache import with_cache
from storefront.config import get_config
from storefront.logger import get_logger
from storefront.models import Category, Collection, Product, Subcategory, Subcollection
from storefront.schemas import (
    CategoryDetail,
    CollectionOut,
    ProductOut,
    SearchResult,
    SubcategorySummary,
)

logger = get_logger("catalog")

SUBCATEGORY_PAGE_SIZE = 20
SEARCH_RESULT_LIMIT = 5
SHORT_SEARCH_TERM_MAX_LEN = 2  # full-text search degrades on terms this short

_TOKEN_UNSAFE = re.compile(r"[^\w-]", re.UNICODE)


class CatalogNotFoundError(LookupError):
    """Requested slug has no matching row. The HTTP layer renders it as a 404."""

    def __init__(self, entity: str, slug: str):
        self.entity = entity
        self.slug = slug
        super().__init__(f"{entity} not found: {slug}")


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


#
# Collections / categories
#

def get_collections(db: Session) -> List[Dict[str, Any]]:
    """All collections ordered by name, each with its categories."""
    def produce():
        rows = (
            db.query(Collection)
            .options(selectinload(Collection.categories))
            .order_by(Collection.name)
            .all()
        )
        return [_dump(CollectionOut.model_validate(row)) for row in rows]

    return with_cache(produce, "getCollections")


def get_collection_details(db: Session, collection_slug: str) -> Dict[str, Any]:
    """One collection (by slug) with its categories."""
    def produce():
        row = (
            db.query(Collection)
            .options(selectinload(Collection.categories))
            .filter(Collection.slug == collection_slug)
            .order_by(Collection.slug, Collection.id)
            .first()
        )
        if row is None:
            raise CatalogNotFoundError("Collection", collection_slug)
        return _dump(CollectionOut.model_validate(row))

    return with_cache(produce, "getCollectionDetails", {"collectionSlug": collection_slug})


def get_category(db: Session, category_slug: str) -> Dict[str, Any]:
    """Category with subcollections, each with its subcategories."""
    def produce():
        row = (
            db.query(Category)
            .options(selectinload(Category.subcollections).selectinload(Subcollection.subcategories))
            .filter(Category.slug == category_slug)
            .first()
        )
        if row is None:
            raise CatalogNotFoundError("Category", category_slug)
        return _dump(CategoryDetail.model_validate(row))

    return with_cache(produce, "getCategory", {"categorySlug": category_slug})


def get_subcategory(db: Session, subcategory_slug: str) -> Optional[Dict[str, Any]]:
    """Subcategory row, or None when the slug is unknown."""
    def produce():
        row = db.query(Subcategory).filter(Subcategory.slug == subcategory_slug).first()
        return _dump(SubcategorySummary.model_validate(row)) if row is not None else None

    return with_cache(produce, "getSubcategory", {"subcategorySlug": subcategory_slug})


#
# Products
#

def get_products_for_subcategory(db: Session, subcategory_slug: str) -> List[Dict[str, Any]]:
    """First page of products in a subcategory, ordered by slug."""
    def produce():
        rows = (
            db.query(Product)
            .filter(Product.subcategory_slug == subcategory_slug)
            .order_by(Product.slug.asc())
            .limit(SUBCATEGORY_PAGE_SIZE)
            .all()
        )
        return [_dump(ProductOut.model_validate(row)) for row in rows]

    return with_cache(produce, "getProductsForSubcategory", {"subcategorySlug": subcategory_slug})


def get_product_details(db: Session, product_slug: str) -> Dict[str, Any]:
    def produce():
        row = db.query(Product).filter(Product.slug == product_slug).first()
        if row is None:
            raise CatalogNotFoundError("Product", product_slug)
        return _dump(ProductOut.model_validate(row))

    return with_cache(produce, "getProductDetails", {"productSlug": product_slug})


#
# Counts
#

def get_product_count(db: Session) -> int:
    def produce():
        return int(db.query(func.count(Product.slug)).scalar() or 0)

    return with_cache(produce, "getProductCount")


def get_category_product_count(db: Session, category_slug: str) -> int:
    """
    Products under a category, through subcollection and subcategory.

    Counts product keys rather than joined rows, so an empty (or unknown)
    category yields 0.
    """
    def produce():
        count = (
            db.query(func.count(Product.slug))
            .select_from(Category)
            .outerjoin(Subcollection, Category.slug == Subcollection.category_slug)
            .outerjoin(Subcategory, Subcollection.id == Subcategory.subcollection_id)
            .outerjoin(Product, Subcategory.slug == Product.subcategory_slug)
            .filter(Category.slug == category_slug)
            .scalar()
        )
        return int(count or 0)

    return with_cache(produce, "getCategoryProductCount", {"categorySlug": category_slug})


def get_subcategory_product_count(db: Session, subcategory_slug: str) -> int:
    def produce():
        count = (
            db.query(func.count(Product.slug))
            .filter(Product.subcategory_slug == subcategory_slug)
            .scalar()
        )
        return int(count or 0)

    return with_cache(produce, "getSubcategoryProductCount", {"subcategorySlug": subcategory_slug})


#
# Search
#

def search_tokens(search_term: str) -> List[str]:
    """Whitespace tokens with tsquery operator characters removed; empty tokens dropped."""
    tokens = []
    for raw in search_term.split():
        token = _TOKEN_UNSAFE.sub("", raw).strip("-")
        if token:
            tokens.append(token)
    return tokens


def format_search_query(search_term: str) -> str:
    """'blue widget' -> 'blue:* & widget:*' (every token a prefix, all required)."""
    return " & ".join(f"{token}:*" for token in search_tokens(search_term))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _search_base_query(db: Session):
    return (
        db.query(Product, Subcategory.slug, Category.slug)
        .join(Subcategory, Product.subcategory_slug == Subcategory.slug)
        .join(Subcollection, Subcategory.subcollection_id == Subcollection.id)
        .join(Category, Subcollection.category_slug == Category.slug)
    )


def _prefix_search(db: Session, term: str):
    return (
        _search_base_query(db)
        .filter(Product.name.ilike(f"{_escape_like(term)}%", escape="\\"))
        .order_by(Product.name, Product.slug)
        .limit(SEARCH_RESULT_LIMIT)
        .all()
    )


def _full_text_search(db: Session, tokens: List[str]):
    query = _full_text_query(_search_base_query(db), tokens, db.get_bind().dialect.name)
    return query.limit(SEARCH_RESULT_LIMIT).all()


def _full_text_query(query, tokens: List[str], dialect_name: str):
    """Filter and order a search query; tsvector/tsquery on Postgres, word-prefix LIKE elsewhere."""
    if dialect_name == "postgresql":
        tsvector = func.to_tsvector("english", Product.name)
        tsquery = func.to_tsquery("english", " & ".join(f"{t}:*" for t in tokens))
        query = query.filter(tsvector.op("@@")(tsquery)).order_by(
            func.ts_rank(tsvector, tsquery).desc(), Product.slug
        )
    else:
        # No tsvector support: every token must prefix some word of the name.
        clauses = []
        for token in tokens:
            escaped = _escape_like(token)
            clauses.append(
                or_(
                    Product.name.ilike(f"{escaped}%", escape="\\"),
                    Product.name.ilike(f"% {escaped}%", escape="\\"),
                )
            )
        query = query.filter(and_(*clauses)).order_by(Product.name, Product.slug)
    return query


def get_search_results(db: Session, search_term: str) -> List[Dict[str, Any]]:
    """
    Up to 5 products matching a free-text term, each with a navigation path.

    Terms of 1-2 characters use a case-insensitive prefix match on the name;
    longer terms use full-text search with every token treated as a prefix.
    """
    def produce():
        term = search_term.strip()
        if not term:
            return []

        if len(term) <= SHORT_SEARCH_TERM_MAX_LEN:
            rows = _prefix_search(db, term)
        else:
            tokens = search_tokens(term)
            if not tokens:
                return []
            rows = _full_text_search(db, tokens)

        results = []
        for product, subcategory_slug, category_slug in rows:
            result = SearchResult(
                **ProductOut.model_validate(product).model_dump(),
                to=f"/products/{category_slug}/{subcategory_slug}/{product.slug}",
            )
            results.append(_dump(result))
        logger.debug("Search %r matched %d products", term, len(results))
        return results

    return with_cache(
        produce,
        "getSearchResults",
        {"searchTerm": search_term},
        get_config().cache_search_ttl,
    )
