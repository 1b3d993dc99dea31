"""
Storefront Catalog Server - Main FastAPI Application

Exposes the cached catalog reads and the cookie cart as JSON endpoints.
"""

import os
import time as _time
import traceback
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from storefront import __version__, cart, catalog
from storefront.cache import get_cache_client
from storefront.cache_policy import SEARCH_HTTP_MAX_AGE
from storefront.catalog import CatalogNotFoundError
from storefront.config import get_config
from storefront.database import Base, engine, get_db
from storefront.logger import get_logger
from storefront.metrics import metrics_collector
from storefront.schemas import (
    CartItem,
    CartResponse,
    CategoryDetail,
    CollectionOut,
    CountOut,
    DetailedCartItem,
    ProductOut,
    SearchResult,
    SubcategorySummary,
)

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create catalog tables if they don't exist. In production, use migrations instead."""
    if engine is not None:
        try:
            Base.metadata.create_all(bind=engine)
        except Exception as _e:
            logger.warning(
                "Could not run Base.metadata.create_all: %s. "
                "Tables should already exist.",
                _e,
            )
    yield


app = FastAPI(
    title="Storefront Catalog Server",
    description="Cached catalog browsing, product search and a cookie-backed cart",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Latency logging middleware
# Logs every non-OPTIONS request with method, path, status, and duration_ms,
# and feeds the per-route latency window in metrics_collector.
# ---------------------------------------------------------------------------
_ROUTE_SUFFIXES = {"count", "product-count", "products", "detailed", "add", "remove"}


def _route_group(path: str) -> str:
    """Collapse slugs so metrics stay keyed by route, e.g. /api/products/{slug}."""
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2 or parts[0] != "api":
        return path
    segments = parts[:2]
    if len(parts) > 2:
        segments.append(parts[2] if parts[2] in _ROUTE_SUFFIXES else "{slug}")
    if len(parts) > 3:
        segments.append(parts[3])
    return "/" + "/".join(segments)


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        if request.method == "OPTIONS":
            return await call_next(request)
        t0 = _time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # Unhandled route errors surface here before the 500 handler runs
            self._record(request, 500, t0)
            raise
        self._record(request, response.status_code, t0)
        return response

    @staticmethod
    def _record(request: StarletteRequest, status_code: int, t0: float) -> None:
        duration_ms = round((_time.perf_counter() - t0) * 1000, 1)
        route = _route_group(request.url.path)
        metrics_collector.record_latency(route, duration_ms)
        if status_code >= 500:
            metrics_collector.record_error(route)
        logger.info(
            "[LATENCY] %s %s -> %d  %.1fms  [%s]",
            request.method, request.url.path, status_code, duration_ms, route,
        )


app.add_middleware(LatencyLoggingMiddleware)


@app.exception_handler(CatalogNotFoundError)
async def catalog_not_found_handler(request: Request, exc: CatalogNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500 so 'Internal server error' is debuggable."""
    err_msg = str(exc)
    tb = traceback.format_exc()
    logger.error("Unhandled exception: %s\n%s", err_msg, tb)
    detail = "Internal server error" if get_config().is_production else err_msg
    return JSONResponse(
        status_code=500,
        content={"detail": detail, "type": type(exc).__name__},
    )


#
# Health Check Endpoints
#

@app.get("/")
def root():
    return {
        "service": "Storefront Catalog Server",
        "version": __version__,
        "status": "operational",
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Detailed health check including database and cache connectivity.
    The cache is optional, so an unreachable Redis only degrades the service.
    """
    health_status = {
        "service": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "healthy"
    except Exception as e:
        health_status["database"] = f"unhealthy: {str(e)}"
        health_status["service"] = "degraded"

    if not get_config().cache_enabled:
        health_status["cache"] = "disabled"
    elif get_cache_client().ping():
        health_status["cache"] = "healthy"
    else:
        health_status["cache"] = "unhealthy: no response"
        health_status["service"] = "degraded"

    return health_status


@app.get("/metrics")
def get_metrics():
    """Latency percentiles per route, cache hit rate, request and error counts."""
    return metrics_collector.get_summary()


#
# Catalog
#

@app.get("/api/collections", response_model=List[CollectionOut])
def list_collections(db: Session = Depends(get_db)):
    return catalog.get_collections(db)


@app.get("/api/collections/{collection_slug}", response_model=CollectionOut)
def collection_details(collection_slug: str, db: Session = Depends(get_db)):
    return catalog.get_collection_details(db, collection_slug)


@app.get("/api/categories/{category_slug}", response_model=CategoryDetail)
def category(category_slug: str, db: Session = Depends(get_db)):
    return catalog.get_category(db, category_slug)


@app.get("/api/categories/{category_slug}/product-count", response_model=CountOut)
def category_product_count(category_slug: str, db: Session = Depends(get_db)):
    return {"count": catalog.get_category_product_count(db, category_slug)}


@app.get("/api/subcategories/{subcategory_slug}", response_model=SubcategorySummary)
def subcategory(subcategory_slug: str, db: Session = Depends(get_db)):
    result = catalog.get_subcategory(db, subcategory_slug)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Subcategory not found: {subcategory_slug}")
    return result


@app.get("/api/subcategories/{subcategory_slug}/products", response_model=List[ProductOut])
def subcategory_products(subcategory_slug: str, db: Session = Depends(get_db)):
    return catalog.get_products_for_subcategory(db, subcategory_slug)


@app.get("/api/subcategories/{subcategory_slug}/product-count", response_model=CountOut)
def subcategory_product_count(subcategory_slug: str, db: Session = Depends(get_db)):
    return {"count": catalog.get_subcategory_product_count(db, subcategory_slug)}


# Must be registered before /api/products/{product_slug}
@app.get("/api/products/count", response_model=CountOut)
def product_count(db: Session = Depends(get_db)):
    return {"count": catalog.get_product_count(db)}


@app.get("/api/products/{product_slug}", response_model=ProductOut)
def product_details(product_slug: str, db: Session = Depends(get_db)):
    return catalog.get_product_details(db, product_slug)


@app.get("/api/search", response_model=List[SearchResult])
def search(
    response: Response,
    search_term: str = Query("", alias="searchTerm"),
    db: Session = Depends(get_db),
):
    results = catalog.get_search_results(db, search_term)
    response.headers["Cache-Control"] = f"max-age={SEARCH_HTTP_MAX_AGE}"
    return results


#
# Cart
#

@app.get("/api/cart", response_model=List[CartItem])
def get_cart(request: Request):
    return cart.read_cart(request)


@app.get("/api/cart/detailed", response_model=List[DetailedCartItem])
def get_detailed_cart(request: Request, response: Response, db: Session = Depends(get_db)):
    return cart.reconcile_cart(request, response, db)


@app.post("/api/cart/add", response_model=CartResponse)
def add_to_cart(
    request: Request,
    response: Response,
    product_slug: Optional[str] = Form(None, alias="productSlug"),
):
    new_cart = cart.add_to_cart(request, response, product_slug)
    message: Optional[str] = "Item added to cart" if product_slug else None
    return CartResponse(message=message, cart=new_cart)


@app.post("/api/cart/remove", response_model=CartResponse)
def remove_from_cart(
    request: Request,
    response: Response,
    product_slug: Optional[str] = Form(None, alias="productSlug"),
):
    return CartResponse(cart=cart.remove_from_cart(request, response, product_slug))


def run() -> None:
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    run()
