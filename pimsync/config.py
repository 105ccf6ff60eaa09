# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int = 0) -> int:
    raw = os.getenv(name, "")
    try:
        return int(str(raw).strip()) if str(raw).strip() else default
    except ValueError:
        return default


def _get_list(name: str, default: list | None = None) -> list[str]:
    raw = os.getenv(name, "")
    if not raw:
        return list(default or [])
    return [p.strip() for p in raw.replace(";", ",").split(",") if p.strip()]


def _get_int_list(name: str) -> list[int]:
    out: list[int] = []
    for p in _get_list(name):
        if p.isdigit():
            out.append(int(p))
    return out


class Settings:
    # ── PIM JSON-RPC endpoint ────────────────────────────────────────────────
    PIM_ENDPOINT: str = _rstrip_slash(os.getenv("PIM_ENDPOINT", ""))
    PIM_AUTH_TYPE: str = os.getenv("PIM_AUTH_TYPE", "bearer").strip().lower()  # bearer | token
    PIM_TOKEN: str = os.getenv("PIM_TOKEN", "")
    PIM_TIMEOUT: int = _get_int("PIM_TIMEOUT", 30)   # clamped 5..120 by the client
    PIM_RETRIES: int = _get_int("PIM_RETRIES", 2)    # clamped 0..5 by the client

    # ── Run shape ────────────────────────────────────────────────────────────
    PIM_BATCH_SIZE: int = _get_int("PIM_BATCH_SIZE", 100)
    PIM_LANGUAGE: str = os.getenv("PIM_LANGUAGE", "nl")
    # Comma-separated, e.g. "nl-NL,en-GB"; empty = let the API decide
    PIM_INCLUDE_LANGUAGES: list[str] = _get_list("PIM_INCLUDE_LANGUAGES")
    # Only sync these collections (empty = all). Purge is disabled while set.
    PIM_COLLECTION_IDS: list[int] = _get_int_list("PIM_COLLECTION_IDS")
    # internal_product_code | manufacturer_product_code
    PIM_USE_SKU_FIELD: str = os.getenv("PIM_USE_SKU_FIELD", "internal_product_code")

    # ── Feature toggles ──────────────────────────────────────────────────────
    PIM_SYNC_CATEGORIES: bool = _get_bool("PIM_SYNC_CATEGORIES", True)
    PIM_SUPER_CATEGORY_ID: int = _get_int("PIM_SUPER_CATEGORY_ID", 0)
    PIM_SYNC_GROUPED_PRODUCTS: bool = _get_bool("PIM_SYNC_GROUPED_PRODUCTS", True)
    PIM_SYNC_CUSTOM_CLASSES: bool = _get_bool("PIM_SYNC_CUSTOM_CLASSES", False)
    PIM_SYNC_TRADE_ITEM_CUSTOM_CLASSES: bool = _get_bool("PIM_SYNC_TRADE_ITEM_CUSTOM_CLASSES", False)
    PIM_CUSTOM_CLASS_FILTER_MODE: str = os.getenv("PIM_CUSTOM_CLASS_FILTER_MODE", "").strip().lower()  # whitelist | blacklist | ""
    PIM_CUSTOM_CLASS_FILTER_IDS: str = os.getenv("PIM_CUSTOM_CLASS_FILTER_IDS", "")
    PIM_PURGE_STALE_PRODUCTS: bool = _get_bool("PIM_PURGE_STALE_PRODUCTS", False)

    # ── Scheduling (0 = manual triggers only) ────────────────────────────────
    PIM_SYNC_INTERVAL_MINUTES: int = _get_int("PIM_SYNC_INTERVAL_MINUTES", 0)
    PIM_SYNC_INTERVAL_DELTA: bool = _get_bool("PIM_SYNC_INTERVAL_DELTA", True)

    # ── Storage ──────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    def __init__(self, **overrides):
        for k, v in overrides.items():
            if not hasattr(type(self), k):
                raise AttributeError(f"Unknown setting: {k}")
            setattr(self, k, v)

    @property
    def sync_custom_classes_any(self) -> bool:
        return bool(self.PIM_SYNC_CUSTOM_CLASSES or self.PIM_SYNC_TRADE_ITEM_CUSTOM_CLASSES)

    @property
    def language(self) -> str:
        """First requested content language, else the configured default."""
        if self.PIM_INCLUDE_LANGUAGES:
            return self.PIM_INCLUDE_LANGUAGES[0]
        return self.PIM_LANGUAGE or "nl"


settings = Settings()
