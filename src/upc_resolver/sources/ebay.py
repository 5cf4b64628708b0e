from __future__ import annotations

import base64
import time
from urllib.parse import urlencode

from upc_resolver.sources.base import HttpSourceAdapter, SourceDescriptor
from upc_resolver.sources.common import (
    HttpResponse,
    SourceNotFoundError,
    SourceTransportError,
    decode_payload,
    fetch_json,
)


OAUTH_SCOPE = "https://api.ebay.com/oauth/api_scope"


class EbayBrowseAdapter(HttpSourceAdapter):
    """eBay Browse API item search, used as the last-resort marketplace source.

    Code lookups search by ``gtin``; name lookups search by keywords. An
    application token (client-credentials grant) is fetched on demand and
    reused until shortly before it expires. The token is fetched before the
    budgeted Browse call, so token requests never count against a budget.
    """

    descriptor = SourceDescriptor(
        key="ebay",
        name="eBay",
        priority=3,
        daily_limits={"lookup": 5000, "search": 5000},
    )

    result_limit = 20

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    def is_configured(self) -> bool:
        return bool(self.config.ebay_app_id and self.config.ebay_cert_id)

    def _base_url(self) -> str:
        if self.config.ebay_environment == "production":
            return "https://api.ebay.com"
        return "https://api.sandbox.ebay.com"

    def _get_access_token(self) -> str:
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        credentials = f"{self.config.ebay_app_id}:{self.config.ebay_cert_id}".encode("utf-8")
        response = fetch_json(
            f"{self._base_url()}/identity/v1/oauth2/token",
            method="POST",
            headers={
                "Authorization": f"Basic {base64.b64encode(credentials).decode('ascii')}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data=urlencode({"grant_type": "client_credentials", "scope": OAUTH_SCOPE}).encode("utf-8"),
            timeout_seconds=self.timeout_seconds,
            source_key=self.descriptor.key,
            debug_label="oauth_token",
        )
        if not response.ok:
            raise SourceTransportError(f"eBay authentication failed with status {response.status}")
        payload = decode_payload(response, self.descriptor.key)
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise SourceTransportError("No access token received from eBay")
        try:
            expires_in = float(payload.get("expires_in", 7200))
        except (TypeError, ValueError):
            expires_in = 7200.0
        self._access_token = token
        # Refresh a minute early so a token never expires mid-request.
        self._token_expires_at = time.time() + max(0.0, expires_in - 60)
        return token

    def _prepare(self, kind: str) -> None:
        self._get_access_token()

    def _browse_search(self, params: dict[str, str | int], label: str) -> HttpResponse:
        token = self._get_access_token()
        return fetch_json(
            f"{self._base_url()}/buy/browse/v1/item_summary/search?{urlencode(params)}",
            headers={
                "Authorization": f"Bearer {token}",
                "X-EBAY-C-MARKETPLACE-ID": self.config.ebay_marketplace_id,
            },
            timeout_seconds=self.timeout_seconds,
            source_key=self.descriptor.key,
            debug_label=label,
        )

    def _send_lookup(self, code: str) -> HttpResponse:
        return self._browse_search({"gtin": code, "limit": self.result_limit}, f"lookup_{code}")

    def _send_search(self, query: str) -> HttpResponse:
        return self._browse_search({"q": query, "limit": self.result_limit}, "search")

    def _check_found(self, kind: str, response: HttpResponse, payload: dict) -> None:
        if not response.ok:
            return
        summaries = payload.get("itemSummaries")
        if not isinstance(summaries, list) or not summaries:
            raise SourceNotFoundError(f"eBay returned no listings for {kind}")
