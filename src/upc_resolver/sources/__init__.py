from __future__ import annotations

from upc_resolver.sources.ebay import EbayBrowseAdapter
from upc_resolver.sources.upcdatabase import UPCDatabaseAdapter
from upc_resolver.sources.upcitemdb import UPCItemDBAdapter

__all__ = [
    "EbayBrowseAdapter",
    "UPCDatabaseAdapter",
    "UPCItemDBAdapter",
]
