"""
Catalog price resolution: authoritative ex-tax prices come from the commerce
platform, never from the caller.
"""
from __future__ import annotations

from typing import Sequence

from application.ports.commerce import CommerceBackend
from core.logging_config import get_logger
from domain.commerce.entity import CatalogVariant
from domain.common.exceptions import PriceLookupFailed


logger = get_logger(__name__)


class CatalogPriceResolver:
    def __init__(self, commerce: CommerceBackend) -> None:
        self._commerce = commerce

    async def resolve(self, item_ids: Sequence[str]) -> dict[str, CatalogVariant]:
        """Price every id or fail; no defaults are ever substituted."""
        unique = list(dict.fromkeys(i for i in item_ids if i))
        if not unique:
            raise PriceLookupFailed([], "No items to price")
        found = await self._commerce.fetch_variants(unique)
        missing = [i for i in unique if i not in found]
        if missing:
            logger.warning("catalog_price_lookup_failed", missing=missing, requested=len(unique))
            raise PriceLookupFailed(missing, "Unknown or unpriced catalog items")
        return {i: found[i] for i in unique}
