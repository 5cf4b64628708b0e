from __future__ import annotations

import json
from urllib.parse import quote

from upc_resolver.sources.base import HttpSourceAdapter, SourceDescriptor
from upc_resolver.sources.common import HttpResponse, SourceNotFoundError, fetch_json


class UPCDatabaseAdapter(HttpSourceAdapter):
    """UPCDatabase.org lookup and search; needs ``UPC_DATABASE_API_KEY``.

    Name searches try this source first because its search allowance is the
    larger of the two UPC databases.
    """

    descriptor = SourceDescriptor(
        key="upcdatabase",
        name="UPCDatabase.org",
        priority=2,
        daily_limits={"lookup": 100, "search": 25},
        kind_priorities={"search": 1},
    )

    base_url = "https://api.upcdatabase.org"

    def is_configured(self) -> bool:
        return bool(self.config.upc_database_api_key)

    def _send_lookup(self, code: str) -> HttpResponse:
        return fetch_json(
            f"{self.base_url}/product/{quote(code, safe='')}",
            method="POST",
            headers={"Content-Type": "application/json"},
            data=json.dumps({"key": self.config.upc_database_api_key}).encode("utf-8"),
            timeout_seconds=self.timeout_seconds,
            source_key=self.descriptor.key,
            debug_label=f"lookup_{code}",
        )

    def _send_search(self, query: str) -> HttpResponse:
        key = quote(self.config.upc_database_api_key, safe="")
        return fetch_json(
            f"{self.base_url}/search/{quote(query, safe='')}/{key}/1",
            timeout_seconds=self.timeout_seconds,
            source_key=self.descriptor.key,
            debug_label="search",
        )

    def _check_found(self, kind: str, response: HttpResponse, payload: dict) -> None:
        if not response.ok:
            return
        if payload.get("success") is False:
            raise SourceNotFoundError(f"UPCDatabase.org {kind}: {payload.get('error') or 'no match'}")
        if kind == "search":
            products = payload.get("products") or payload.get("items")
            if not isinstance(products, list) or not products:
                raise SourceNotFoundError("UPCDatabase.org search returned no products")
        else:
            record = payload.get("product") if isinstance(payload.get("product"), dict) else payload
            if not (record.get("title") or record.get("name") or record.get("description")):
                raise SourceNotFoundError("UPCDatabase.org lookup returned an empty record")
