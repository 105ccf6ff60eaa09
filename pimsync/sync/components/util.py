# pimsync/sync/components/util.py
from __future__ import annotations

import re
import time
import unicodedata
from datetime import datetime, timezone
from typing import Any, List
from urllib.parse import unquote


def utcnow() -> datetime:
    """Naive UTC timestamp (what the DateTime columns store)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_z(dt: datetime | None = None) -> str:
    dt = dt or utcnow()
    return dt.replace(microsecond=0).isoformat() + "Z"


def monotonic() -> float:
    return time.monotonic()


def slugify(value: Any) -> str:
    s = unicodedata.normalize("NFKD", str(value or "")).encode("ascii", "ignore").decode("ascii")
    s = re.sub(r"[^a-z0-9]+", "-", s.lower())
    return s.strip("-")


def sanitize_key(value: Any) -> str:
    return re.sub(r"[^a-z0-9_\-]", "", str(value or "").lower())


def as_list(raw: Any) -> List[Any]:
    """A single object or a list of objects → list."""
    if raw is None or raw == "" or raw == {}:
        return []
    if isinstance(raw, list):
        return raw
    return [raw]


def clean_url(url: str | None) -> str:
    # JSON payloads sometimes carry escaped slashes and percent-encoded paths
    return unquote((url or "").replace("\\/", "/")).strip()


def fmt_number(v: Any) -> str:
    if isinstance(v, bool):
        return str(int(v))
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).strip()


def fmt_price(v: Any) -> str:
    f = float(v)
    s = f"{f:.4f}".rstrip("0").rstrip(".")
    return s or "0"
