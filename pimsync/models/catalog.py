# pimsync/models/catalog.py
# Local catalog tables: entries (simple / family / member), category terms,
# brands and attribute axes with their terms.
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from pimsync.db import Base

KIND_SIMPLE = "simple"
KIND_FAMILY = "family"
KIND_MEMBER = "member"

STATUS_PUBLISH = "publish"
STATUS_DRAFT = "draft"
STATUS_TRASH = "trash"

entry_categories = Table(
    "entry_categories",
    Base.metadata,
    Column("entry_id", Integer, ForeignKey("catalog_entries.id", ondelete="CASCADE"), primary_key=True),
    Column("term_id", Integer, ForeignKey("category_terms.id", ondelete="CASCADE"), primary_key=True),
)


class CatalogEntry(Base):
    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), index=True, default=KIND_SIMPLE)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("catalog_entries.id"), nullable=True, index=True)
    sku: Mapped[Optional[str]] = mapped_column(String(191), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    short_description: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(16), default=STATUS_PUBLISH, index=True)

    # Scalar copies of remote price/stock signals
    regular_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    price_on_request: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_status: Mapped[str] = mapped_column(String(16), default="instock")
    min_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    max_price: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    attributes: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)            # label -> display value
    variation_attributes: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)  # axis slug -> term slug
    text_meta: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)             # cc_<code> -> text
    images: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    documents: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    brand_id: Mapped[Optional[int]] = mapped_column(ForeignKey("brands.id"), nullable=True)

    # Back-references to the remote catalog
    external_key: Mapped[Optional[str]] = mapped_column(String(191), nullable=True, index=True)
    remote_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    grouped_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    virtual_product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CategoryTerm(Base):
    __tablename__ = "category_terms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), index=True)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("category_terms.id"), nullable=True, index=True)
    remote_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)


class Brand(Base):
    __tablename__ = "brands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)


class AttributeAxis(Base):
    __tablename__ = "attribute_axes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(32), unique=True)   # e.g. "etim_ef000721" or "variant"
    label: Mapped[str] = mapped_column(String(255), default="")


class AttributeTerm(Base):
    __tablename__ = "attribute_terms"
    __table_args__ = (UniqueConstraint("axis_id", "slug", name="uq_axis_term_slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    axis_id: Mapped[int] = mapped_column(ForeignKey("attribute_axes.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(191))


class FamilyAxis(Base):
    """An axis as used by one family: position plus its option set (term ids)."""
    __tablename__ = "family_axes"
    __table_args__ = (UniqueConstraint("entry_id", "axis_id", name="uq_family_axis"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("catalog_entries.id", ondelete="CASCADE"), index=True)
    axis_id: Mapped[int] = mapped_column(ForeignKey("attribute_axes.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    options: Mapped[List[Any]] = mapped_column(JSON, default=list)
