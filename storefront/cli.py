#!/usr/bin/env python3
"""
Cache maintenance for the storefront catalog.

Catalog entries expire by TTL only; after an out-of-band import, clear them:

    storefront-cache ping
    storefront-cache clear --all
    storefront-cache clear --function getProductDetails --function getSearchResults
    storefront-cache clear --pattern "cache:getCategory:*"
"""

import argparse
import sys

from storefront.cache import (
    clear_all_cache,
    clear_functions_cache,
    get_cache_client,
    invalidate_cache,
)

CACHED_FUNCTIONS = (
    "getCollections",
    "getCollectionDetails",
    "getProductsForSubcategory",
    "getProductDetails",
    "getSubcategory",
    "getCategory",
    "getProductCount",
    "getCategoryProductCount",
    "getSubcategoryProductCount",
    "getSearchResults",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and invalidate the storefront Redis cache")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ping", help="Check that the cache backend is reachable")

    clear = sub.add_parser("clear", help="Delete cached catalog entries")
    scope = clear.add_mutually_exclusive_group(required=True)
    scope.add_argument("--all", action="store_true", help="Delete every cache:* key")
    scope.add_argument(
        "--function",
        action="append",
        choices=CACHED_FUNCTIONS,
        help="Delete entries for one cached operation (repeatable)",
    )
    scope.add_argument("--pattern", help="Delete keys matching a raw Redis glob pattern")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "ping":
        ok = get_cache_client().ping()
        print("cache: reachable" if ok else "cache: unreachable")
        return 0 if ok else 1

    if args.all:
        deleted = clear_all_cache()
    elif args.function:
        deleted = clear_functions_cache(args.function)
    else:
        deleted = invalidate_cache(args.pattern)
    print(f"Deleted {deleted} cache keys")
    return 0


if __name__ == "__main__":
    sys.exit(main())
