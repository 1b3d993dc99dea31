"""
storefront: catalog browsing, product search and a cookie cart.

    storefront.catalog  cached catalog reads (collections -> products, search)
    storefront.cart     cookie-backed cart
    storefront.cache    read-through Redis cache
    storefront.main     FastAPI application
"""

__version__ = "1.0.0"
