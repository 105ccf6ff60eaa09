# pimsync/pim/records.py
# ---------------------------------------------------------
# Boundary models for remote PIM records.
# Raw feature containers (list of objects, or an object keyed by feature
# code) are normalized here, once, into ordered lists of TypedFeature so
# nothing downstream has to guess the shape.
# ---------------------------------------------------------
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from pimsync.sync.components.translations import normalize_translations, pick_text

_CODE_KEY_RE = re.compile(r"^[A-Za-z0-9]+$")

FEATURE_TYPES = {"A", "M", "L", "N", "R", "D", "I", "T", "B"}
ATTRIBUTE_TYPES = {"A", "M", "L", "N", "R", "D", "I"}
TEXT_META_TYPES = {"T", "B"}


class CodedValue(BaseModel):
    code: str = ""
    translations: List[Dict[str, Any]] = Field(default_factory=list)  # [{language, text}]


class TypedFeature(BaseModel):
    code: str = ""
    type: str = ""
    source: str = "etim"                    # etim | custom
    key: str = ""                           # dedup key: code, else a positional fallback
    order: Optional[int] = None
    not_applicable: bool = False
    label_translations: List[Dict[str, Any]] = Field(default_factory=list)   # [{language, text}]
    values: List[CodedValue] = Field(default_factory=list)
    value_code: Optional[str] = None
    numeric_value: Any = None
    logical_value: Optional[bool] = None
    range_min: Any = None
    range_max: Any = None
    unit_code: Optional[str] = None
    unit_translations: List[Dict[str, Any]] = Field(default_factory=list)    # [{language, abbreviation, description}]
    date_value: Optional[str] = None
    text_value: Optional[str] = None
    translated_texts: List[Dict[str, Any]] = Field(default_factory=list)     # [{language, text}]
    class_id: Optional[int] = None
    class_code: Optional[str] = None

    class Config:
        extra = "allow"


class CategoryRef(BaseModel):
    id: Optional[int] = None
    name: str = ""
    parent_id: Optional[int] = None
    parent_name: str = ""
    parent: Optional["CategoryRef"] = None


class GroupMember(BaseModel):
    product_id: int
    sku: str
    order: int = 999


class AxisCode(BaseModel):
    code: str
    order: int = 999
    label: str = ""


class GroupedProduct(BaseModel):
    grouped_product_id: int
    name: str = ""
    code: str = ""
    trashed: bool = False
    virtual_product_id: Optional[int] = None
    members: List[GroupMember] = Field(default_factory=list)
    axis_features: List[Dict[str, Any]] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _as_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _as_bool(v: Any) -> Optional[bool]:
    if v is None or v == "":
        return None
    if isinstance(v, str):
        return v.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(v)


def _rename(rows: List[Dict[str, Any]], mapping: Dict[str, str]) -> List[Dict[str, Any]]:
    out = []
    for r in rows:
        n: Dict[str, Any] = {"language": r.get("language", "")}
        for src, dst in mapping.items():
            if r.get(src) not in (None, ""):
                n[dst] = r.get(src)
        out.append(n)
    return out


def normalize_feature_container(raw: Any, code_field: str = "etim_feature_code") -> List[Dict[str, Any]]:
    """List of feature dicts, or {CODE: {...}} → ordered list with the code injected."""
    if not raw:
        return []
    if isinstance(raw, list):
        return [f for f in raw if isinstance(f, dict)]
    if isinstance(raw, dict):
        if code_field in raw:
            return [raw]
        out = []
        for k, feat in raw.items():
            if not isinstance(feat, dict):
                continue
            if not feat.get(code_field) and isinstance(k, str) and _CODE_KEY_RE.match(k):
                feat = {**feat, code_field: k}
            out.append(feat)
        return out
    return []


def _normalize_type(raw_type: Any, has_logical: bool) -> str:
    t = str(raw_type or "").strip().upper()
    if t == "LOGICAL":
        return "L"
    if t == "C":
        return "A"
    if t == "" and has_logical:
        return "L"
    return t


# ---------------------------------------------------------------------------
# feature normalization
# ---------------------------------------------------------------------------

def etim_feature(raw: Dict[str, Any]) -> TypedFeature:
    code = str(raw.get("etim_feature_code") or "").strip()
    value_code = raw.get("etim_value_code")
    value_trans = _rename(normalize_translations(raw.get("_etim_value_translations")), {"etim_value_description": "text"})
    values = [CodedValue(code=str(value_code), translations=value_trans)] if value_code else []
    return TypedFeature(
        code=code,
        type=_normalize_type(raw.get("etim_feature_type"), "logical_value" in raw),
        source="etim",
        key=code or f"etim_{raw.get('order_number', 0)}",
        order=_as_int(raw.get("order") if raw.get("order") is not None else raw.get("order_number")),
        not_applicable=bool(_as_bool(raw.get("not_applicable"))),
        label_translations=_rename(
            normalize_translations(raw.get("_etim_feature_translations")),
            {"etim_feature_description": "text"},
        ),
        values=values,
        value_code=str(value_code) if value_code else None,
        numeric_value=raw.get("numeric_value"),
        logical_value=_as_bool(raw.get("logical_value")),
        range_min=raw.get("range_min"),
        range_max=raw.get("range_max"),
        unit_code=raw.get("etim_unit_code"),
        unit_translations=_rename(
            normalize_translations(raw.get("_etim_unit_translations")),
            {"etim_unit_abbreviation": "abbreviation", "etim_unit_description": "description"},
        ),
        date_value=str(raw["date_value"]) if raw.get("date_value") else None,
    )


def custom_feature(raw: Dict[str, Any], cls: Optional[Dict[str, Any]] = None) -> TypedFeature:
    cls = cls or {}
    code = str(raw.get("custom_feature_code") or "").strip()
    fallback_id = raw.get("custom_class_feature_id") or raw.get("custom_feature_id") or ""
    values: List[CodedValue] = []
    for v in raw.get("_custom_values") or []:
        if not isinstance(v, dict):
            continue
        values.append(CodedValue(
            code=str(v.get("custom_value_code") or ""),
            translations=_rename(
                normalize_translations(v.get("_custom_value_translations")),
                {"custom_value_description": "text"},
            ),
        ))
    ftype = _normalize_type(raw.get("custom_feature_type"), False)
    text = raw.get("big_text_value") if ftype == "B" else raw.get("text_value")
    return TypedFeature(
        code=code,
        type=ftype,
        source="custom",
        key=code or f"cc_{fallback_id}",
        order=_as_int(raw.get("order")),
        not_applicable=bool(_as_bool(raw.get("not_applicable"))),
        label_translations=_rename(
            normalize_translations(raw.get("_custom_feature_translations")),
            {"custom_feature_description": "text"},
        ),
        values=values,
        value_code=str(raw["custom_value_code"]) if raw.get("custom_value_code") else None,
        numeric_value=raw.get("numeric_value"),
        logical_value=_as_bool(raw.get("logical_value")),
        range_min=raw.get("range_min"),
        range_max=raw.get("range_max"),
        unit_code=raw.get("custom_unit_code"),
        unit_translations=_rename(
            normalize_translations(raw.get("_custom_unit_translations")),
            {"custom_unit_abbreviation": "abbreviation", "custom_unit_description": "description"},
        ),
        date_value=str(raw["date_value"]) if raw.get("date_value") else None,
        text_value=str(text) if text not in (None, "") else None,
        translated_texts=_rename(normalize_translations(raw.get("translated_texts")), {"value": "text", "text": "text"}),
        class_id=_as_int(cls.get("custom_class_id")),
        class_code=str(cls["custom_class_code"]) if cls.get("custom_class_code") else None,
    )


# ---------------------------------------------------------------------------
# categories / grouped products
# ---------------------------------------------------------------------------

def category_ref(raw: Dict[str, Any], lang: str, depth: int = 0) -> Optional[CategoryRef]:
    """Build a CategoryRef from a remote category dict; nested parents become a chain."""
    if not isinstance(raw, dict):
        return None
    cat_id = _as_int(raw.get("category_id", raw.get("product_category_id", raw.get("id"))))
    trans = normalize_translations(raw.get("_category_translations") or raw.get("_translations"))
    name = pick_text(trans, lang, "category_name", "product_category_name", "name")
    if not name:
        name = str(raw.get("category_name") or raw.get("product_category_name") or raw.get("name") or "")
    parent = None
    if depth < 32 and isinstance(raw.get("_parent_category"), dict):
        parent = category_ref(raw["_parent_category"], lang, depth + 1)
    parent_id = _as_int(raw.get("parent_category_id", raw.get("parent_id")))
    if parent_id is None and parent is not None:
        parent_id = parent.id
    parent_name = parent.name if parent else str(raw.get("parent_category_name") or raw.get("parent_name") or "")
    return CategoryRef(id=cat_id, name=name.strip(), parent_id=parent_id, parent_name=parent_name.strip(), parent=parent)


def grouped_product(raw: Dict[str, Any]) -> Optional[GroupedProduct]:
    gid = _as_int(raw.get("grouped_product_id", raw.get("id")))
    if gid is None:
        return None
    members: List[GroupMember] = []
    for item in raw.get("_products") or raw.get("products") or []:
        if not isinstance(item, dict):
            continue
        pid = _as_int(item.get("product_id"))
        sku = str(item.get("internal_product_code") or "").strip()
        if pid and sku:
            order = _as_int(item.get("order"))
            members.append(GroupMember(product_id=pid, sku=sku, order=999 if order is None else order))
    return GroupedProduct(
        grouped_product_id=gid,
        name=str(raw.get("grouped_product_name") or raw.get("grouped_product_code") or raw.get("name") or ""),
        code=str(raw.get("grouped_product_code") or raw.get("internal_product_code") or ""),
        trashed=bool(raw.get("product_trashed_on")),
        virtual_product_id=_as_int(raw.get("virtual_product_id")),
        members=members,
        axis_features=normalize_feature_container(raw.get("_etim_features")),
        raw=raw,
    )


CategoryRef.model_rebuild()
