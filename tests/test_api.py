"""
Endpoint tests via FastAPI TestClient.

The database is the seeded in-memory SQLite from conftest.py and the cache
backend is the in-memory Redis stand-in, so no external services are needed.
"""

import json
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from storefront.cache import set_cache_client
from storefront.cli import main as cache_cli
from storefront.config import StorefrontConfig, set_config
from storefront.database import get_db
from storefront.main import app
from storefront.metrics import metrics_collector


def _cart_pairs(body):
    return [(line["productSlug"], line["quantity"]) for line in body["cart"]]


# ── Service ──────────────────────────────────────────────────────────────

class TestService:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "Storefront Catalog Server"
        assert body["status"] == "operational"

    def test_health_all_healthy(self, client):
        body = client.get("/health").json()
        assert body == {"service": "healthy", "database": "healthy", "cache": "healthy"}

    def test_health_degraded_when_cache_down(self, client, failing_redis):
        body = client.get("/health").json()
        assert body["database"] == "healthy"
        assert body["cache"].startswith("unhealthy")
        assert body["service"] == "degraded"

    def test_metrics_grouped_by_route(self, client):
        client.get("/api/products/widget-a")
        client.get("/api/products/widget-b")
        summary = client.get("/metrics").json()
        route = summary["endpoints"]["/api/products/{slug}"]
        assert route["total_requests"] == 2
        assert summary["cache"]["total_misses"] == 2

    def test_unhandled_error_counted_in_metrics(self):
        def broken_db():
            raise RuntimeError("DATABASE_URL is not configured")
            yield

        app.dependency_overrides[get_db] = broken_db
        try:
            r = TestClient(app, raise_server_exceptions=False).get("/api/products/count")
        finally:
            app.dependency_overrides.clear()
        assert r.status_code == 500
        assert r.json()["type"] == "RuntimeError"
        route = metrics_collector.get_summary()["endpoints"]["/api/products/count"]
        assert route["total_requests"] == 1
        assert route["total_errors"] == 1

    def test_catalog_served_when_cache_client_cannot_be_built(self, client):
        set_config(StorefrontConfig(upstash_redis_url="https://example.upstash.io"))
        set_cache_client(None)
        r = client.get("/api/products/count")
        assert r.status_code == 200
        assert r.json() == {"count": 6}
        assert client.get("/health").json()["cache"].startswith("unhealthy")


# ── Catalog ──────────────────────────────────────────────────────────────

class TestCatalogEndpoints:
    def test_collections(self, client):
        r = client.get("/api/collections")
        assert r.status_code == 200
        assert [c["name"] for c in r.json()] == ["Appliances", "Tools"]

    def test_collection_details(self, client):
        r = client.get("/api/collections/tools")
        assert r.status_code == 200
        assert [c["slug"] for c in r.json()["categories"]] == ["empty-category", "hand-tools"]

    def test_category(self, client):
        body = client.get("/api/categories/hand-tools").json()
        assert body["subcollections"][0]["subcategories"][1]["slug"] == "widgets"

    def test_subcategory_and_products(self, client):
        assert client.get("/api/subcategories/gizmos").json()["name"] == "Gizmos"
        products = client.get("/api/subcategories/gizmos/products").json()
        assert [p["slug"] for p in products] == ["blue-gadget", "gadget-c"]

    def test_product_details(self, client):
        body = client.get("/api/products/widget-b").json()
        assert body["name"] == "Widget B"
        assert body["price"] == "12.50"

    @pytest.mark.parametrize("path", [
        "/api/products/ghost",
        "/api/categories/ghost",
        "/api/subcategories/ghost",
        "/api/collections/ghost",
    ])
    def test_unknown_slug_is_404(self, client, path):
        r = client.get(path)
        assert r.status_code == 404
        assert "ghost" in r.json()["detail"]

    @pytest.mark.parametrize("path, expected", [
        ("/api/products/count", 6),
        ("/api/categories/hand-tools/product-count", 6),
        ("/api/categories/empty-category/product-count", 0),
        ("/api/categories/ghost/product-count", 0),
        ("/api/subcategories/widgets/product-count", 4),
    ])
    def test_counts(self, client, path, expected):
        r = client.get(path)
        assert r.status_code == 200
        assert r.json() == {"count": expected}


class TestSearchEndpoint:
    def test_short_term(self, client):
        r = client.get("/api/search", params={"searchTerm": "Wi"})
        assert r.status_code == 200
        assert [p["name"] for p in r.json()] == ["Widget A", "Widget B"]
        assert r.json()[0]["to"] == "/products/hand-tools/widgets/widget-a"

    def test_multi_word(self, client):
        r = client.get("/api/search", params={"searchTerm": "blue widget"})
        assert [p["slug"] for p in r.json()] == ["blue-widget"]

    def test_cache_control_header(self, client):
        r = client.get("/api/search", params={"searchTerm": "gadget"})
        assert r.headers["cache-control"] == "max-age=600"

    def test_missing_term_is_empty(self, client):
        r = client.get("/api/search")
        assert r.status_code == 200
        assert r.json() == []

    def test_served_when_cache_down(self, client, failing_redis):
        r = client.get("/api/search", params={"searchTerm": "gadget"})
        assert r.status_code == 200
        assert [p["slug"] for p in r.json()] == ["blue-gadget", "gadget-c"]


# ── Cart ─────────────────────────────────────────────────────────────────

class TestCartEndpoints:
    def test_empty_cart(self, client):
        assert client.get("/api/cart").json() == []

    def test_add_twice_increments(self, client):
        first = client.post("/api/cart/add", data={"productSlug": "widget-a"})
        assert first.json() == {
            "message": "Item added to cart",
            "cart": [{"productSlug": "widget-a", "quantity": 1}],
        }
        second = client.post("/api/cart/add", data={"productSlug": "widget-a"})
        assert _cart_pairs(second.json()) == [("widget-a", 2)]
        assert client.get("/api/cart").json() == [{"productSlug": "widget-a", "quantity": 2}]

    def test_add_then_remove(self, client):
        client.post("/api/cart/add", data={"productSlug": "widget-a"})
        client.post("/api/cart/add", data={"productSlug": "gadget-c"})
        r = client.post("/api/cart/remove", data={"productSlug": "widget-a"})
        assert r.json()["message"] is None
        assert _cart_pairs(r.json()) == [("gadget-c", 1)]
        client.post("/api/cart/remove", data={"productSlug": "gadget-c"})
        assert client.get("/api/cart").json() == []

    def test_missing_slug_is_noop(self, client):
        client.post("/api/cart/add", data={"productSlug": "widget-a"})
        r = client.post("/api/cart/add")
        assert r.status_code == 200
        assert r.json()["message"] is None
        assert _cart_pairs(r.json()) == [("widget-a", 1)]
        assert "set-cookie" not in r.headers

    def test_remove_absent_slug_leaves_cookie(self, client):
        r = client.post("/api/cart/remove", data={"productSlug": "ghost"})
        assert r.json()["cart"] == []
        assert "set-cookie" not in r.headers

    def test_cookie_attributes(self, client):
        r = client.post("/api/cart/add", data={"productSlug": "widget-a"})
        header = r.headers["set-cookie"].lower()
        assert header.startswith("cart=")
        assert "httponly" in header
        assert "samesite=strict" in header
        assert "max-age=604800" in header
        assert "secure" not in header

    def test_cookie_secure_in_production(self, client):
        set_config(StorefrontConfig(env="production"))
        r = client.post("/api/cart/add", data={"productSlug": "widget-a"})
        assert "secure" in r.headers["set-cookie"].lower()

    def test_garbage_cookie_reads_as_empty(self, client):
        client.cookies.set("cart", "%7Bnot-json")
        assert client.get("/api/cart").json() == []

    def test_zero_quantity_cookie_reads_as_empty(self, client):
        client.cookies.set("cart", quote(json.dumps([{"productSlug": "widget-a", "quantity": 0}]), safe=""))
        assert client.get("/api/cart").json() == []

    def test_detailed_cart(self, client):
        client.post("/api/cart/add", data={"productSlug": "gadget-c"})
        client.post("/api/cart/add", data={"productSlug": "widget-a"})
        client.post("/api/cart/add", data={"productSlug": "gadget-c"})
        body = client.get("/api/cart/detailed").json()
        assert [(line["slug"], line["quantity"]) for line in body] == [("gadget-c", 2), ("widget-a", 1)]
        assert body[0]["subcategory"]["subcollection"]["id"] == "sc-everyday"

    def test_unknown_slug_accepted_then_pruned(self, client):
        r = client.post("/api/cart/add", data={"productSlug": "ghost"})
        assert _cart_pairs(r.json()) == [("ghost", 1)]
        client.post("/api/cart/add", data={"productSlug": "widget-b"})

        detailed = client.get("/api/cart/detailed")
        assert [line["slug"] for line in detailed.json()] == ["widget-b"]
        assert "set-cookie" in detailed.headers
        assert client.get("/api/cart").json() == [{"productSlug": "widget-b", "quantity": 1}]

    def test_detailed_cart_without_orphans_leaves_cookie(self, client):
        client.post("/api/cart/add", data={"productSlug": "widget-b"})
        detailed = client.get("/api/cart/detailed")
        assert "set-cookie" not in detailed.headers


# ── Cache maintenance CLI ────────────────────────────────────────────────

class TestCacheCli:
    def test_ping(self, capsys):
        assert cache_cli(["ping"]) == 0
        assert "reachable" in capsys.readouterr().out

    def test_ping_unreachable(self, failing_redis, capsys):
        assert cache_cli(["ping"]) == 1
        assert "unreachable" in capsys.readouterr().out

    def test_clear_function(self, client, fake_redis, capsys):
        client.get("/api/products/widget-a")
        client.get("/api/products/count")
        assert cache_cli(["clear", "--function", "getProductDetails"]) == 0
        assert "Deleted 1 cache keys" in capsys.readouterr().out
        assert list(fake_redis.store) == ["cache:getProductCount:"]

    def test_clear_all(self, client, fake_redis, capsys):
        client.get("/api/collections")
        client.get("/api/search", params={"searchTerm": "Wi"})
        assert cache_cli(["clear", "--all"]) == 0
        assert fake_redis.store == {}

    def test_clear_requires_scope(self):
        with pytest.raises(SystemExit):
            cache_cli(["clear"])
