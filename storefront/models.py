"""
SQLAlchemy database models.
These are the authoritative source of truth for the catalog.

Hierarchy (each level cascades on delete of its parent):
    collections -> categories -> subcollections -> subcategories -> products

Categories, subcategories and products use their slug as the natural primary
key. Rows are written by out-of-band import jobs; at request time the catalog
is read-only.
"""

from sqlalchemy import DDL, Column, ForeignKey, Index, Numeric, Text, event, func
from sqlalchemy.orm import relationship

from storefront.database import Base


class Collection(Base):
    """Top-level merchandising grouping."""
    __tablename__ = "collections"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False)

    categories = relationship(
        "Category",
        back_populates="collection",
        order_by="Category.name",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Category(Base):
    __tablename__ = "categories"

    slug = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    collection_id = Column(
        Text, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image_url = Column(Text, nullable=True)

    collection = relationship("Collection", back_populates="categories")
    subcollections = relationship(
        "Subcollection",
        back_populates="category",
        order_by="Subcollection.name",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Subcollection(Base):
    __tablename__ = "subcollections"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    category_slug = Column(
        Text, ForeignKey("categories.slug", ondelete="CASCADE"), nullable=False, index=True
    )

    category = relationship("Category", back_populates="subcollections")
    subcategories = relationship(
        "Subcategory",
        back_populates="subcollection",
        order_by="Subcategory.name",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Subcategory(Base):
    __tablename__ = "subcategories"

    slug = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    subcollection_id = Column(
        Text, ForeignKey("subcollections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image_url = Column(Text, nullable=True)

    subcollection = relationship("Subcollection", back_populates="subcategories")
    products = relationship(
        "Product",
        back_populates="subcategory",
        order_by="Product.slug",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Product(Base):
    __tablename__ = "products"

    slug = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # decimal dollars, two places
    subcategory_slug = Column(
        Text, ForeignKey("subcategories.slug", ondelete="CASCADE"), nullable=False, index=True
    )
    image_url = Column(Text, nullable=True)

    subcategory = relationship("Subcategory", back_populates="products")


# Search indexes on products.name. Both rely on Postgres extensions, so they
# are only emitted when the metadata is created against a Postgres bind.
Index(
    "name_search_index",
    func.to_tsvector("english", Product.name),
    postgresql_using="gin",
).ddl_if(dialect="postgresql")

Index(
    "name_trgm_index",
    Product.name,
    postgresql_using="gin",
    postgresql_ops={"name": "gin_trgm_ops"},
).ddl_if(dialect="postgresql")

event.listen(
    Base.metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS pg_trgm").execute_if(dialect="postgresql"),
)
