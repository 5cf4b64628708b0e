from __future__ import annotations

"""Map vendor payloads onto ``NormalizedProduct``.

Each vendor shape gets one pure function. Every field is read defensively:
wrong types become ``None`` (or an empty list), malformed prices become
``None``, and fields outside the canonical shape are dropped.
"""

import math
import re
from collections.abc import Callable
from typing import Any

from upc_resolver.models import NormalizedProduct, Offer, RawVendorResponse


# Optional short currency prefix, one number, optional trailing currency code.
_PRICE = re.compile(r"[^\d\-.]{0,4}?\s*(-?[\d,]*\.?\d+)(?:\s*[A-Za-z]{3})?")


def parse_price(value: Any) -> float | None:
    """Parse a price-like value; anything unparseable gives ``None``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _PRICE.fullmatch(value.replace("\xa0", " ").strip())
        if not match:
            return None
        try:
            number = float(match.group(1).replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _text(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        return None
    cleaned = " ".join(value.replace("\xa0", " ").split())
    return cleaned or None


def _first_text(obj: dict[str, Any], *names: str) -> str | None:
    for name in names:
        value = _text(obj.get(name))
        if value:
            return value
    return None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [x for x in value if isinstance(x, dict)]


def _urls(value: Any) -> list[str]:
    """Accept a single URL or a list of URLs; keep order, drop duplicates."""
    raw = value if isinstance(value, list) else [value]
    urls: list[str] = []
    for item in raw:
        url = _text(item)
        if url and url.startswith(("http://", "https://")) and url not in urls:
            urls.append(url)
    return urls


def _currency(value: Any, default: str = "USD") -> str:
    code = _text(value)
    return code.upper() if code and len(code) == 3 and code.isalpha() else default


def _offer(row: dict[str, Any], default_currency: str) -> Offer | None:
    merchant = _first_text(row, "merchant", "domain", "seller")
    if not merchant:
        return None
    return Offer(
        merchant=merchant,
        price=parse_price(row.get("price")),
        list_price=parse_price(row.get("list_price")),
        currency=_currency(row.get("currency"), default_currency),
        condition=_text(row.get("condition")),
        availability=_text(row.get("availability")),
        link=_text(row.get("link")),
    )


def _offers(value: Any, default_currency: str) -> list[Offer]:
    return [o for o in (_offer(row, default_currency) for row in _dicts(value)) if o is not None]


def _price_bounds(offers: list[Offer]) -> tuple[float | None, float | None]:
    prices = [o.price for o in offers if o.price is not None]
    if not prices:
        return None, None
    return min(prices), max(prices)


def normalize_upcitemdb(payload: dict[str, Any]) -> NormalizedProduct:
    """UPCItemDB ``lookup`` and ``search`` share one shape: ``{"items": [...]}``."""
    items = _dicts(payload.get("items"))
    item = items[0] if items else {}
    currency = _currency(item.get("currency"))
    offers = _offers(item.get("offers"), currency)
    low = parse_price(item.get("lowest_recorded_price"))
    high = parse_price(item.get("highest_recorded_price"))
    return NormalizedProduct(
        upc=_text(item.get("upc")),
        ean=_text(item.get("ean")),
        gtin=_text(item.get("gtin")),
        title=_text(item.get("title")),
        description=_text(item.get("description")),
        brand=_text(item.get("brand")),
        model=_text(item.get("model")),
        color=_text(item.get("color")),
        size=_text(item.get("size")),
        weight=_text(item.get("weight")),
        dimensions=_text(item.get("dimension")),
        category=_text(item.get("category")),
        currency=currency,
        lowest_price=low,
        highest_price=high,
        images=_urls(item.get("images")),
        offers=offers,
    )


def normalize_upcdatabase_lookup(payload: dict[str, Any]) -> NormalizedProduct:
    # Some responses nest the record under "product", others return it flat.
    product = _dict(payload.get("product")) or payload
    currency = _currency(product.get("currency"))
    offers = _offers(product.get("offers"), currency)
    low = parse_price(product.get("lowest_price"))
    high = parse_price(product.get("highest_price"))
    return NormalizedProduct(
        upc=_first_text(product, "upc", "barcode"),
        ean=_text(product.get("ean")),
        gtin=_text(product.get("gtin")),
        title=_first_text(product, "title", "name"),
        description=_text(product.get("description")),
        brand=_first_text(product, "brand", "manufacturer"),
        model=_text(product.get("model")),
        color=_text(product.get("color")),
        size=_text(product.get("size")),
        weight=_text(product.get("weight")),
        dimensions=_first_text(product, "dimensions", "dimension"),
        category=_text(product.get("category")),
        currency=currency,
        lowest_price=low,
        highest_price=high,
        images=_urls(product.get("images") or product.get("image")),
        offers=offers,
    )


def normalize_upcdatabase_search(payload: dict[str, Any]) -> NormalizedProduct:
    rows = _dicts(payload.get("products")) or _dicts(payload.get("items"))
    row = rows[0] if rows else {}
    images = _urls(row.get("image")) or _urls(row.get("images"))
    return NormalizedProduct(
        upc=_first_text(row, "upc", "barcode"),
        title=_first_text(row, "title", "name"),
        description=_text(row.get("description")),
        brand=_first_text(row, "brand", "manufacturer"),
        category=_text(row.get("category")),
        images=images,
    )


def normalize_ebay_search(payload: dict[str, Any]) -> NormalizedProduct:
    """Fold eBay Browse ``itemSummaries`` into one product with one offer per listing."""
    summaries = _dicts(payload.get("itemSummaries"))
    first = summaries[0] if summaries else {}
    first_price = _dict(first.get("price"))
    currency = _currency(first_price.get("currency"))

    images: list[str] = []
    offers: list[Offer] = []
    for summary in summaries:
        image = _dict(summary.get("image")).get("imageUrl")
        for url in _urls(image) + _urls([_dict(x).get("imageUrl") for x in _dicts(summary.get("thumbnailImages"))]):
            if url not in images:
                images.append(url)
        price = _dict(summary.get("price"))
        offers.append(
            Offer(
                merchant=_text(_dict(summary.get("seller")).get("username")) or "eBay",
                price=parse_price(price.get("value")),
                currency=_currency(price.get("currency"), currency),
                condition=_text(summary.get("condition")),
                link=_text(summary.get("itemWebUrl")),
            )
        )

    categories = _dicts(first.get("categories"))
    low, high = _price_bounds(offers)
    return NormalizedProduct(
        gtin=_text(first.get("gtin")),
        title=_text(first.get("title")),
        description=_text(first.get("shortDescription")),
        brand=_text(first.get("brand")),
        category=_text(categories[0].get("categoryName")) if categories else None,
        currency=currency,
        lowest_price=low,
        highest_price=high,
        images=images,
        offers=offers,
    )


_NORMALIZERS: dict[tuple[str, str], Callable[[dict[str, Any]], NormalizedProduct]] = {
    ("upcitemdb", "lookup"): normalize_upcitemdb,
    ("upcitemdb", "search"): normalize_upcitemdb,
    ("upcdatabase", "lookup"): normalize_upcdatabase_lookup,
    ("upcdatabase", "search"): normalize_upcdatabase_search,
    ("ebay", "lookup"): normalize_ebay_search,
    ("ebay", "search"): normalize_ebay_search,
}


def normalize(raw: RawVendorResponse) -> NormalizedProduct:
    normalizer = _NORMALIZERS.get((raw.source, raw.operation))
    if normalizer is None:
        raise ValueError(f"No normalizer for {raw.source}/{raw.operation}")
    return normalizer(raw.payload if isinstance(raw.payload, dict) else {})
