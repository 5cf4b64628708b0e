from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any


LOOKUP = "lookup"
SEARCH = "search"
OPERATION_KINDS: tuple[str, ...] = (LOOKUP, SEARCH)

_CODE_SEPARATORS = re.compile(r"[\s-]+")


@dataclass(frozen=True, slots=True)
class LookupKey:
    """Input to one resolution: either a UPC/EAN/GTIN code or a product name."""

    code: str | None = None
    product_name: str | None = None
    brand: str | None = None

    @classmethod
    def for_code(cls, code: str) -> LookupKey:
        cleaned = _CODE_SEPARATORS.sub("", code or "")
        if not cleaned.isdigit() or not (8 <= len(cleaned) <= 14):
            raise ValueError(f"Not a UPC/EAN/GTIN code: {code!r}")
        return cls(code=cleaned)

    @classmethod
    def for_name(cls, product_name: str, brand: str | None = None) -> LookupKey:
        name = " ".join((product_name or "").split())
        if not name:
            raise ValueError("Product name is required")
        cleaned_brand = " ".join((brand or "").split()) or None
        return cls(product_name=name, brand=cleaned_brand)

    @property
    def kind(self) -> str:
        return LOOKUP if self.code else SEARCH

    @property
    def search_query(self) -> str:
        name = self.product_name or ""
        return f"{self.brand} {name}" if self.brand else name

    def describe(self) -> str:
        return f"UPC {self.code}" if self.code else f'"{self.search_query}"'


@dataclass(slots=True)
class RateBudget:
    source: str
    kind: str
    limit: int
    used: int
    remaining: int
    window_reset_at: datetime

    def copy(self) -> RateBudget:
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "kind": self.kind,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "window_reset_at": self.window_reset_at.isoformat(),
        }


@dataclass(slots=True)
class Offer:
    merchant: str
    price: float | None = None
    list_price: float | None = None
    currency: str = "USD"
    condition: str | None = None
    availability: str | None = None
    link: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class NormalizedProduct:
    upc: str | None = None
    ean: str | None = None
    gtin: str | None = None
    title: str | None = None
    description: str | None = None
    brand: str | None = None
    model: str | None = None
    color: str | None = None
    size: str | None = None
    weight: str | None = None
    dimensions: str | None = None
    category: str | None = None
    currency: str = "USD"
    lowest_price: float | None = None
    highest_price: float | None = None
    images: list[str] = field(default_factory=list)
    offers: list[Offer] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["offers"] = [o.to_dict() for o in self.offers]
        return data


@dataclass(slots=True)
class RawVendorResponse:
    """Decoded vendor reply, tagged with the adapter key and operation kind."""

    source: str
    operation: str
    status: int
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SourceAttempt:
    source: str
    status: str
    detail: str = ""
    retry_after_seconds: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class ResolutionResult:
    found: bool
    source: str | None
    product: NormalizedProduct | None
    usage_snapshot: dict[str, RateBudget]
    attempts: list[SourceAttempt] = field(default_factory=list)
    status: str = "not_found"

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "source": self.source,
            "status": self.status,
            "product": self.product.to_dict() if self.product else None,
            "usage": {name: budget.to_dict() for name, budget in self.usage_snapshot.items()},
            "attempts": [a.to_dict() for a in self.attempts],
        }
