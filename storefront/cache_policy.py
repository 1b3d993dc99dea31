"""
Storefront Redis caching policy: what gets cached, key patterns, and TTLs.

Imported by cache.py for defaults and by catalog.py for per-operation TTLs.

Architecture:
  Postgres → source of truth (collections, categories, products)
  Redis    → read-through cache (TTL-based expiry, never authoritative)
  Cookie   → cart state (never cached server-side)

The catalog is written only by out-of-band imports, so entries are never
invalidated on write. After an import, run `storefront-cache clear --all`
or clear the affected function names.
"""

# ────────────────────────────────────────────────────────────────────────────
# Cache Policy Table
# ────────────────────────────────────────────────────────────────────────────
#
# Operation                    | Key                                         | TTL
# -----------------------------+---------------------------------------------+--------
# getCollections               | cache:getCollections:                       | 2 hours
# getCollectionDetails         | cache:getCollectionDetails:{input}          | 2 hours
# getProductsForSubcategory    | cache:getProductsForSubcategory:{input}     | 2 hours
# getProductDetails            | cache:getProductDetails:{input}             | 2 hours
# getSubcategory               | cache:getSubcategory:{input}                | 2 hours
# getCategory                  | cache:getCategory:{input}                   | 2 hours
# getProductCount              | cache:getProductCount:                      | 2 hours
# getCategoryProductCount      | cache:getCategoryProductCount:{input}       | 2 hours
# getSubcategoryProductCount   | cache:getSubcategoryProductCount:{input}    | 2 hours
# getSearchResults             | cache:getSearchResults:{input}              | 10 min
#
# {input} is canonical JSON: object keys sorted at every depth, compact
# separators. {"b":1,"a":2} and {"a":2,"b":1} map to the same key.
#
# ────────────────────────────────────────────────────────────────────────────
# Consistency Expectations
# ────────────────────────────────────────────────────────────────────────────
#
# - Catalog reads may be stale by up to 2 hours after an import.
# - Search results may be stale by up to 10 minutes; the HTTP response also
#   carries Cache-Control: max-age=600 so browsers hold them for as long.
# - Not-found results are not cached (the producer raises before storing).
#   A missing subcategory is cached as null, since that lookup returns None.

KEY_PREFIX = "cache"

DEFAULT_TTL_SECONDS = 7200          # 2 hours
SEARCH_TTL_SECONDS = 600            # 10 minutes
SEARCH_HTTP_MAX_AGE = 600           # Cache-Control max-age on /api/search
