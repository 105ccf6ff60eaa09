#===========================================================================
# pimsync/store/catalog_store.py
# Local catalog store on SQLAlchemy async sessions.
# Every public method runs in its own short transaction so a failing record
# never leaves half-written state behind for the next one.
#===========================================================================
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pimsync.db import get_sessionmaker
from pimsync.models.catalog import (
    KIND_FAMILY,
    KIND_MEMBER,
    STATUS_DRAFT,
    STATUS_PUBLISH,
    STATUS_TRASH,
    AttributeAxis,
    AttributeTerm,
    Brand,
    CatalogEntry,
    CategoryTerm,
    FamilyAxis,
    entry_categories,
)
from pimsync.sync.components.util import fmt_price, slugify

logger = logging.getLogger("uvicorn.error")

_ENTRY_FIELDS = {c.name for c in CatalogEntry.__table__.columns} - {"id", "created_at", "updated_at"}


class CatalogStore:
    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._sm = sessionmaker or get_sessionmaker()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    async def get_entry(self, entry_id: int) -> Optional[CatalogEntry]:
        async with self._sm() as session:
            return await session.get(CatalogEntry, entry_id)

    async def find_entry_by_sku(self, sku: str) -> Optional[CatalogEntry]:
        """Natural-SKU lookup; trashed entries do not own their SKU."""
        if not sku:
            return None
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(CatalogEntry.sku == sku, CatalogEntry.status != STATUS_TRASH)
                .order_by(CatalogEntry.id)
                .limit(1)
            )
            return (await session.execute(q)).scalars().first()

    async def sku_owner(self, sku: str, exclude_id: Optional[int] = None) -> Optional[int]:
        if not sku:
            return None
        async with self._sm() as session:
            q = select(CatalogEntry.id).where(CatalogEntry.sku == sku, CatalogEntry.status != STATUS_TRASH)
            if exclude_id is not None:
                q = q.where(CatalogEntry.id != exclude_id)
            return (await session.execute(q.limit(1))).scalars().first()

    async def find_entry_by_external_key(self, key: str) -> Optional[CatalogEntry]:
        if not key:
            return None
        async with self._sm() as session:
            q = select(CatalogEntry).where(CatalogEntry.external_key == key).order_by(CatalogEntry.id).limit(1)
            return (await session.execute(q)).scalars().first()

    async def find_entry_by_product_id(self, product_id: Optional[int]) -> Optional[CatalogEntry]:
        if not product_id:
            return None
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(CatalogEntry.remote_product_id == product_id, CatalogEntry.kind != KIND_FAMILY)
                .order_by(CatalogEntry.id)
                .limit(1)
            )
            return (await session.execute(q)).scalars().first()

    async def find_family_by_grouped_id(self, grouped_id: int) -> Optional[CatalogEntry]:
        """
        The family stamped with this grouped id, whatever its status; else any
        live entry carrying the id (callers check the kind).
        """
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(CatalogEntry.grouped_product_id == grouped_id, CatalogEntry.kind == KIND_FAMILY)
                .order_by(CatalogEntry.id)
                .limit(1)
            )
            family = (await session.execute(q)).scalars().first()
            if family is not None:
                return family
            q = (
                select(CatalogEntry)
                .where(CatalogEntry.grouped_product_id == grouped_id, CatalogEntry.status != STATUS_TRASH)
                .order_by(CatalogEntry.id)
                .limit(1)
            )
            return (await session.execute(q)).scalars().first()

    async def find_member(self, family_id: int, sku: str) -> Optional[CatalogEntry]:
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(
                    CatalogEntry.parent_id == family_id,
                    CatalogEntry.kind == KIND_MEMBER,
                    CatalogEntry.sku == sku,
                )
                .limit(1)
            )
            return (await session.execute(q)).scalars().first()

    async def create_entry(self, kind: str, **fields: Any) -> int:
        unknown = set(fields) - _ENTRY_FIELDS
        if unknown:
            raise ValueError(f"Unknown entry fields: {sorted(unknown)}")
        async with self._sm.begin() as session:
            entry = CatalogEntry(kind=kind, **fields)
            session.add(entry)
            await session.flush()
            return entry.id

    async def update_entry(self, entry_id: int, **fields: Any) -> None:
        if not fields:
            return
        unknown = set(fields) - _ENTRY_FIELDS
        if unknown:
            raise ValueError(f"Unknown entry fields: {sorted(unknown)}")
        async with self._sm.begin() as session:
            entry = await session.get(CatalogEntry, entry_id)
            if entry is None:
                raise LookupError(f"Catalog entry {entry_id} not found")
            for k, v in fields.items():
                setattr(entry, k, v)

    async def set_entry_categories(self, entry_id: int, term_ids: List[int]) -> None:
        async with self._sm.begin() as session:
            await session.execute(delete(entry_categories).where(entry_categories.c.entry_id == entry_id))
            unique = list(dict.fromkeys(term_ids))
            if unique:
                await session.execute(
                    entry_categories.insert(),
                    [{"entry_id": entry_id, "term_id": t} for t in unique],
                )

    async def get_entry_category_ids(self, entry_id: int) -> List[int]:
        async with self._sm() as session:
            q = select(entry_categories.c.term_id).where(entry_categories.c.entry_id == entry_id)
            return sorted((await session.execute(q)).scalars().all())

    async def retire_entry(self, entry_id: int) -> int:
        """Status → trash. A family takes its members with it. Returns the number retired."""
        async with self._sm.begin() as session:
            ids = [entry_id]
            entry = await session.get(CatalogEntry, entry_id)
            if entry is None:
                return 0
            if entry.kind == KIND_FAMILY:
                members = await session.execute(
                    select(CatalogEntry.id).where(
                        CatalogEntry.parent_id == entry_id, CatalogEntry.status != STATUS_TRASH
                    )
                )
                ids.extend(members.scalars().all())
            res = await session.execute(
                update(CatalogEntry)
                .where(CatalogEntry.id.in_(ids), CatalogEntry.status != STATUS_TRASH)
                .values(status=STATUS_TRASH)
            )
            return res.rowcount or 0

    async def list_stale_entries(self, run_started_at: datetime) -> List[CatalogEntry]:
        """Remote-owned, live entries not stamped during the run that started at run_started_at."""
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(
                    CatalogEntry.status != STATUS_TRASH,
                    or_(CatalogEntry.external_key.is_not(None), CatalogEntry.grouped_product_id.is_not(None)),
                    or_(CatalogEntry.synced_at.is_(None), CatalogEntry.synced_at < run_started_at),
                )
                .order_by(CatalogEntry.id)
            )
            return list((await session.execute(q)).scalars().all())

    async def list_remote_entries(self) -> List[CatalogEntry]:
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(
                    CatalogEntry.status != STATUS_TRASH,
                    or_(
                        CatalogEntry.external_key.is_not(None),
                        CatalogEntry.grouped_product_id.is_not(None),
                        CatalogEntry.remote_product_id.is_not(None),
                    ),
                )
                .order_by(CatalogEntry.id)
            )
            return list((await session.execute(q)).scalars().all())

    async def list_members(self, family_id: int) -> List[CatalogEntry]:
        async with self._sm() as session:
            q = (
                select(CatalogEntry)
                .where(CatalogEntry.parent_id == family_id, CatalogEntry.kind == KIND_MEMBER)
                .order_by(CatalogEntry.id)
            )
            return list((await session.execute(q)).scalars().all())

    async def recompute_family(self, family_id: int) -> None:
        """Derive family stock status and price bounds from its live members."""
        async with self._sm.begin() as session:
            family = await session.get(CatalogEntry, family_id)
            if family is None:
                return
            rows = await session.execute(
                select(CatalogEntry).where(
                    CatalogEntry.parent_id == family_id,
                    CatalogEntry.kind == KIND_MEMBER,
                    CatalogEntry.status != STATUS_TRASH,
                )
            )
            members = rows.scalars().all()
            prices: List[float] = []
            for m in members:
                if m.regular_price in (None, ""):
                    continue
                try:
                    p = float(m.regular_price)
                except ValueError:
                    continue
                if p > 0:
                    prices.append(p)
            family.min_price = fmt_price(min(prices)) if prices else None
            family.max_price = fmt_price(max(prices)) if prices else None
            family.stock_status = "instock" if any(m.stock_status == "instock" for m in members) else "outofstock"
            if family.status != STATUS_TRASH and members and family.status != STATUS_DRAFT:
                family.status = STATUS_PUBLISH

    # ------------------------------------------------------------------
    # Category terms
    # ------------------------------------------------------------------
    async def find_term_by_remote_id(self, remote_id: Any) -> Optional[CategoryTerm]:
        async with self._sm() as session:
            q = select(CategoryTerm).where(CategoryTerm.remote_id == str(remote_id)).order_by(CategoryTerm.id).limit(1)
            return (await session.execute(q)).scalars().first()

    async def find_term_by_name(self, name: str, parent_id: Optional[int]) -> Optional[CategoryTerm]:
        """Case-insensitive name match at one tree position."""
        async with self._sm() as session:
            q = select(CategoryTerm).where(func.lower(CategoryTerm.name) == name.strip().lower())
            if parent_id is None:
                q = q.where(CategoryTerm.parent_id.is_(None))
            else:
                q = q.where(CategoryTerm.parent_id == parent_id)
            return (await session.execute(q.order_by(CategoryTerm.id).limit(1))).scalars().first()

    async def create_term(self, name: str, parent_id: Optional[int] = None, remote_id: Any = None) -> int:
        async with self._sm.begin() as session:
            term = CategoryTerm(
                name=name.strip(),
                slug=slugify(name) or "category",
                parent_id=parent_id,
                remote_id=str(remote_id) if remote_id is not None else None,
            )
            session.add(term)
            await session.flush()
            return term.id

    async def set_term_remote_id(self, term_id: int, remote_id: Any) -> None:
        async with self._sm.begin() as session:
            await session.execute(
                update(CategoryTerm).where(CategoryTerm.id == term_id).values(remote_id=str(remote_id))
            )

    async def list_terms(self) -> List[CategoryTerm]:
        async with self._sm() as session:
            return list((await session.execute(select(CategoryTerm).order_by(CategoryTerm.id))).scalars().all())

    async def list_terms_with_remote_id(self) -> List[CategoryTerm]:
        async with self._sm() as session:
            q = select(CategoryTerm).where(CategoryTerm.remote_id.is_not(None)).order_by(CategoryTerm.id)
            return list((await session.execute(q)).scalars().all())

    async def count_active_entries_for_term(self, term_id: int) -> int:
        async with self._sm() as session:
            q = (
                select(func.count())
                .select_from(entry_categories.join(CatalogEntry, CatalogEntry.id == entry_categories.c.entry_id))
                .where(entry_categories.c.term_id == term_id, CatalogEntry.status != STATUS_TRASH)
            )
            return int((await session.execute(q)).scalar() or 0)

    async def delete_term(self, term_id: int) -> None:
        """Children move up to the deleted term's parent."""
        async with self._sm.begin() as session:
            term = await session.get(CategoryTerm, term_id)
            if term is None:
                return
            await session.execute(
                update(CategoryTerm).where(CategoryTerm.parent_id == term_id).values(parent_id=term.parent_id)
            )
            await session.execute(delete(entry_categories).where(entry_categories.c.term_id == term_id))
            await session.delete(term)

    # ------------------------------------------------------------------
    # Brands
    # ------------------------------------------------------------------
    async def find_or_create_brand(self, name: str) -> Tuple[int, bool]:
        name = name.strip()
        async with self._sm.begin() as session:
            q = select(Brand).where(func.lower(Brand.name) == name.lower()).limit(1)
            brand = (await session.execute(q)).scalars().first()
            if brand is not None:
                return brand.id, False
            brand = Brand(name=name)
            session.add(brand)
            await session.flush()
            return brand.id, True

    async def list_brands(self) -> List[Brand]:
        async with self._sm() as session:
            return list((await session.execute(select(Brand).order_by(Brand.name))).scalars().all())

    async def set_entry_brand(self, entry_id: int, brand_id: Optional[int]) -> None:
        await self.update_entry(entry_id, brand_id=brand_id)

    # ------------------------------------------------------------------
    # Attribute axes / terms
    # ------------------------------------------------------------------
    async def ensure_axis(self, slug: str, label: str, raw_label: str = "") -> AttributeAxis:
        """
        Find or create an axis by slug. An axis whose stored label is still the
        raw code (or empty) is relabelled when a better label comes along.
        """
        async with self._sm.begin() as session:
            q = select(AttributeAxis).where(AttributeAxis.slug == slug).limit(1)
            axis = (await session.execute(q)).scalars().first()
            if axis is None:
                axis = AttributeAxis(slug=slug, label=label or raw_label or slug)
                session.add(axis)
                await session.flush()
                return axis
            if label and axis.label != label and axis.label in ("", raw_label, slug):
                axis.label = label
            return axis

    async def find_or_create_attr_term(self, axis_id: int, name: str, slug: str = "") -> int:
        """Lookup by slug, then by name; create otherwise."""
        slug = slug or slugify(name) or "value"
        async with self._sm.begin() as session:
            q = select(AttributeTerm).where(AttributeTerm.axis_id == axis_id, AttributeTerm.slug == slug).limit(1)
            term = (await session.execute(q)).scalars().first()
            if term is None:
                q = select(AttributeTerm).where(
                    AttributeTerm.axis_id == axis_id,
                    func.lower(AttributeTerm.name) == name.strip().lower(),
                ).limit(1)
                term = (await session.execute(q)).scalars().first()
            if term is None:
                term = AttributeTerm(axis_id=axis_id, name=name.strip(), slug=slug)
                session.add(term)
                await session.flush()
            return term.id

    async def get_attr_term(self, term_id: int) -> Optional[AttributeTerm]:
        async with self._sm() as session:
            return await session.get(AttributeTerm, term_id)

    async def set_family_axes(self, entry_id: int, axes: List[Tuple[int, List[int]]]) -> None:
        """Replace the family's axis list: [(axis_id, [term ids]), ...] in position order."""
        async with self._sm.begin() as session:
            await session.execute(delete(FamilyAxis).where(FamilyAxis.entry_id == entry_id))
            for pos, (axis_id, options) in enumerate(axes):
                session.add(FamilyAxis(entry_id=entry_id, axis_id=axis_id, position=pos, options=list(options)))

    async def add_option_to_family(self, entry_id: int, axis_id: int, term_id: int) -> None:
        async with self._sm.begin() as session:
            q = select(FamilyAxis).where(FamilyAxis.entry_id == entry_id, FamilyAxis.axis_id == axis_id).limit(1)
            row = (await session.execute(q)).scalars().first()
            if row is None:
                count = await session.execute(
                    select(func.count()).select_from(FamilyAxis).where(FamilyAxis.entry_id == entry_id)
                )
                session.add(FamilyAxis(entry_id=entry_id, axis_id=axis_id, position=int(count.scalar() or 0), options=[term_id]))
                return
            if term_id not in (row.options or []):
                # JSON columns only track reassignment
                row.options = list(row.options or []) + [term_id]

    async def get_family_axes(self, entry_id: int) -> List[Dict[str, Any]]:
        async with self._sm() as session:
            q = (
                select(FamilyAxis, AttributeAxis)
                .join(AttributeAxis, AttributeAxis.id == FamilyAxis.axis_id)
                .where(FamilyAxis.entry_id == entry_id)
                .order_by(FamilyAxis.position)
            )
            out: List[Dict[str, Any]] = []
            for fa, axis in (await session.execute(q)).all():
                out.append({
                    "axis_id": axis.id,
                    "slug": axis.slug,
                    "label": axis.label,
                    "position": fa.position,
                    "options": list(fa.options or []),
                })
            return out
