"""Pytest configuration for storefront tests."""

import fnmatch
from decimal import Decimal

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.cache import CacheClient, set_cache_client
from storefront.config import set_config
from storefront.database import Base, get_db
from storefront.main import app
from storefront.metrics import metrics_collector
from storefront.models import Category, Collection, Product, Subcategory, Subcollection


# ---------------------------------------------------------------------------
# Redis stand-ins. Only the commands CacheClient issues are implemented.
# ---------------------------------------------------------------------------

class InMemoryRedis:
    """Dict-backed replacement for redis.Redis(decode_responses=True)."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.get_calls = 0

    def get(self, key):
        self.get_calls += 1
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def scan_iter(self, match="*", count=None):
        return iter([k for k in list(self.store) if fnmatch.fnmatchcase(k, match)])

    def delete(self, *keys):
        deleted = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                deleted += 1
        return deleted

    def ping(self):
        return True


class FailingRedis:
    """Every command raises, as an unreachable Redis would."""

    def __init__(self, exc_type=redis.exceptions.ConnectionError):
        self.exc_type = exc_type
        self.calls = 0

    def _fail(self, *args, **kwargs):
        self.calls += 1
        raise self.exc_type("Error 111 connecting to localhost:6379. Connection refused.")

    get = set = scan_iter = delete = ping = _fail


# ---------------------------------------------------------------------------
# Global state isolation. Config, cache client and metrics are module-level
# singletons. Reset them around every test.
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function", autouse=True)
def _isolate_globals():
    set_config(None)
    metrics_collector.reset()
    yield
    set_config(None)
    set_cache_client(None)
    metrics_collector.reset()


@pytest.fixture(autouse=True)
def fake_redis():
    """Install an in-memory cache backend for every test."""
    backend = InMemoryRedis()
    set_cache_client(CacheClient(client=backend))
    return backend


@pytest.fixture
def failing_redis():
    """Swap the cache backend for one that always fails."""
    backend = FailingRedis()
    set_cache_client(CacheClient(client=backend))
    return backend


# ---------------------------------------------------------------------------
# Database: in-memory SQLite shared across threads (TestClient runs sync
# routes in a threadpool).
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


def seed_catalog(db):
    """
    tools (Tools)
      hand-tools (Hand Tools)
        Everyday
          widgets: widget-a, widget-b, blue-widget, red-widget
          gizmos:  gadget-c, blue-gadget
      empty-category (Empty Category)
    appliances (Appliances)
      kitchen (Kitchen)
    """
    db.add_all([
        Collection(id="col-tools", name="Tools", slug="tools"),
        Collection(id="col-appliances", name="Appliances", slug="appliances"),
        Category(slug="hand-tools", name="Hand Tools", collection_id="col-tools"),
        Category(slug="empty-category", name="Empty Category", collection_id="col-tools"),
        Category(slug="kitchen", name="Kitchen", collection_id="col-appliances",
                 image_url="https://example.com/kitchen.png"),
        Subcollection(id="sc-everyday", name="Everyday", category_slug="hand-tools"),
        Subcategory(slug="widgets", name="Widgets", subcollection_id="sc-everyday"),
        Subcategory(slug="gizmos", name="Gizmos", subcollection_id="sc-everyday"),
    ])
    products = [
        ("widget-a", "Widget A", "widgets", "9.99"),
        ("widget-b", "Widget B", "widgets", "12.50"),
        ("blue-widget", "Blue Widget", "widgets", "14.00"),
        ("red-widget", "Red Widget", "widgets", "14.00"),
        ("gadget-c", "Gadget C", "gizmos", "30.00"),
        ("blue-gadget", "Blue Gadget", "gizmos", "31.00"),
    ]
    for slug, name, subcategory_slug, price in products:
        db.add(Product(
            slug=slug,
            name=name,
            description=f"{name} description",
            price=Decimal(price),
            subcategory_slug=subcategory_slug,
        ))
    db.commit()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    seed_catalog(db)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(db_session):
    """TestClient with get_db overridden to the seeded SQLite session."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
