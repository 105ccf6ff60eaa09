# pimsync/sync/components/translations.py
from __future__ import annotations

import re
from typing import Any, Dict, List

_LANG_KEY_RE = re.compile(r"^[a-z]{2}([-_][a-z]{2})?$", re.I)


def normalize_translations(raw: Any) -> List[Dict[str, Any]]:
    """
    Translations arrive either as a list of {language, ...} rows or as an
    object keyed by language tag ({"nl": {...}, "en-GB": {...}}).
    Always returns a list of dicts carrying a "language" key.
    """
    if not raw:
        return []
    if isinstance(raw, list):
        rows = [t for t in raw if isinstance(t, dict)]
        with_lang = [t for t in rows if "language" in t]
        return with_lang or rows
    if isinstance(raw, dict):
        if "language" in raw:
            return [raw]
        out: List[Dict[str, Any]] = []
        for lang, data in raw.items():
            if isinstance(data, dict) and _LANG_KEY_RE.match(str(lang)):
                out.append({"language": str(lang), **data})
        return out
    return []


def pick_translation(translations: List[Dict[str, Any]], lang: str) -> Dict[str, Any]:
    """
    1) exact language tag (case-insensitive)
    2) same 2-letter prefix, either direction ("nl" ~ "nl-NL")
    3) first entry
    """
    if not translations:
        return {}
    want = (lang or "").strip().lower()
    for t in translations:
        if str(t.get("language") or "").strip().lower() == want:
            return t
    if len(want) >= 2:
        for t in translations:
            tl = str(t.get("language") or "").strip().lower()
            if len(tl) >= 2 and tl[:2] == want[:2]:
                return t
    return translations[0]


def pick_text(translations: List[Dict[str, Any]], lang: str, *fields: str) -> str:
    t = pick_translation(translations, lang)
    for f in fields:
        v = t.get(f)
        if v is not None and str(v).strip() != "":
            return str(v)
    return ""
