# pimsync/sync/components/price.py
from __future__ import annotations
from typing import Any, Dict, Iterator, Optional, Tuple


def _prices(product: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for ti in product.get("_trade_items") or []:
        if not isinstance(ti, dict):
            continue
        for p in ti.get("_trade_item_prices") or []:
            if isinstance(p, dict):
                yield p


def _num(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def is_price_on_request(product: Dict[str, Any]) -> bool:
    return any(p.get("price_on_request") for p in _prices(product))


def regular_price(product: Dict[str, Any]) -> Optional[float]:
    """
    First usable trade-item price. When gross > net the gross price is the
    regular one; otherwise net. "On request" means no numeric price at all.
    """
    for p in _prices(product):
        if p.get("price_on_request"):
            return None
        gross = _num(p.get("gross_price"))
        net = _num(p.get("net_price"))
        if gross is not None and net is not None and gross > net:
            return gross
        if net is not None and net >= 0:
            return net
    return None


def resolve_price(product: Dict[str, Any]) -> Tuple[bool, Optional[float]]:
    """(on_request, price). on_request wins over any numeric value."""
    if is_price_on_request(product):
        return True, None
    return False, regular_price(product)
