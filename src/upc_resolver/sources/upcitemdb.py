from __future__ import annotations

from urllib.parse import urlencode

from upc_resolver.sources.base import HttpSourceAdapter, SourceDescriptor
from upc_resolver.sources.common import HttpResponse, SourceNotFoundError, fetch_json


class UPCItemDBAdapter(HttpSourceAdapter):
    """UPCItemDB lookup and name search.

    The trial tier needs no key, so the adapter is always configured. When a
    ``user_key`` is set the paid ``/prod/v1`` endpoints are used instead. The
    trial tier rejects bursts, hence the 10 second spacing.

    Its rate-limit headers report the one request quota behind both
    endpoints, tracked as the lookup budget. Searches draw on that quota and
    also keep their own smaller daily cap.
    """

    descriptor = SourceDescriptor(
        key="upcitemdb",
        name="UPCItemDB",
        priority=1,
        min_spacing_seconds=10.0,
        daily_limits={"lookup": 100, "search": 20},
        kind_priorities={"search": 2},
        quota_kinds={"search": "lookup"},
    )

    _not_found_codes = ("INVALID_UPC", "INVALID_QUERY", "NOT_FOUND")

    def _base_url(self) -> str:
        tier = "v1" if self.config.upcitemdb_user_key else "trial"
        return f"https://api.upcitemdb.com/prod/{tier}"

    def _headers(self) -> dict[str, str]:
        if not self.config.upcitemdb_user_key:
            return {}
        return {"user_key": self.config.upcitemdb_user_key, "key_type": self.config.upcitemdb_key_type}

    def _send_lookup(self, code: str) -> HttpResponse:
        return fetch_json(
            f"{self._base_url()}/lookup?{urlencode({'upc': code})}",
            headers=self._headers(),
            timeout_seconds=self.timeout_seconds,
            source_key=self.descriptor.key,
            debug_label=f"lookup_{code}",
        )

    def _send_search(self, query: str) -> HttpResponse:
        params = {"s": query, "match_mode": "0", "type": "product"}
        return fetch_json(
            f"{self._base_url()}/search?{urlencode(params)}",
            headers=self._headers(),
            timeout_seconds=self.timeout_seconds,
            source_key=self.descriptor.key,
            debug_label=f"search_{query}",
        )

    def _check_found(self, kind: str, response: HttpResponse, payload: dict) -> None:
        code = str(payload.get("code", "")).upper()
        if not response.ok:
            if code in self._not_found_codes:
                raise SourceNotFoundError(f"UPCItemDB rejected the {kind} request: {code}")
            return
        items = payload.get("items")
        if code != "OK" or not isinstance(items, list) or not items:
            raise SourceNotFoundError(f"UPCItemDB returned no items for {kind} (code={code or 'missing'})")
