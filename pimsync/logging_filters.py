# --- Global log sanitizer: redact API tokens, trim HTML error pages ------------
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')
_TOKEN_RE    = re.compile(r'(?i)(bearer\s+|x-skwirrel-api-token["\']?\s*[:=]\s*["\']?)([A-Za-z0-9._\-]{6,})')


def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()


def summarize_html(s: str, limit: int = 200) -> str:
    """Gateway error pages (502/504 from a proxy) collapse to their <title>."""
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"


def redact_tokens(s: str) -> str:
    return _TOKEN_RE.sub(lambda m: m.group(1) + "***", s)


def trim_body(s: str, max_len: int = 500) -> str:
    if not isinstance(s, str):
        return s
    if _HTML_SIG_RE.search(s):
        return summarize_html(s, limit=180)
    return s if len(s) <= max_len else s[:max_len] + "…"


class _SanitizeFilter(logging.Filter):
    """Replace HTML blobs with a short summary and mask credentials."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if not isinstance(msg, str):
            return True
        clean = msg
        if len(clean) > 200 and _HTML_SIG_RE.search(clean):
            clean = summarize_html(clean)
        clean = redact_tokens(clean)
        if clean != msg:
            record.msg = clean
            record.args = ()
        return True


def install() -> None:
    # install once on common loggers (root + uvicorn family)
    for _name in ("", "uvicorn", "uvicorn.error"):
        lg = logging.getLogger(_name)
        if not any(isinstance(f, _SanitizeFilter) for f in lg.filters):
            lg.addFilter(_SanitizeFilter())
# --------------------------------------------------------------------------------
