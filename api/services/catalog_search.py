# api/services/catalog_search.py
# ================================
# Catalog Search Service
# ================================

import logging
from typing import Any, Dict, List, Optional

from api.services.review_errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 50


def clamp(value: Optional[int], low: int, high: int, default: int) -> int:
    if value is None:
        return default
    return max(low, min(high, int(value)))


def to_catalog_hit(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "item_id": row.get("item_id"),
        "name": row.get("name"),
        "hsn_or_sac": row.get("hsn8"),
    }


class CatalogSearch:
    def __init__(self, store):
        self.store = store

    def search(
        self,
        org_id: str,
        query: Optional[str] = "",
        limit: Optional[int] = DEFAULT_LIMIT,
        offset: Optional[int] = 0,
    ) -> List[Dict[str, Any]]:
        """
        Case-insensitive substring match on item name or SKU, ordered by name.
        A blank query is no filter at all: it pages through the whole catalog.
        """
        q = (query or "").strip()
        limit = clamp(limit, 1, MAX_LIMIT, DEFAULT_LIMIT)
        offset = max(0, int(offset or 0))
        rows = self.store.search_catalog(org_id, q, limit, offset)
        return [to_catalog_hit(r) for r in rows]

    def search_for_ingestion(
        self,
        ingestion_id: int,
        query: Optional[str] = "",
        limit: Optional[int] = DEFAULT_LIMIT,
        offset: Optional[int] = 0,
    ) -> List[Dict[str, Any]]:
        """Search the catalog of the org that owns the ingestion's invoice."""
        invoice = self.store.get_invoice_for_ingestion(ingestion_id)
        if not invoice:
            raise NotFound("ingestion", ingestion_id)
        return self.search(invoice["org_id"], query, limit, offset)
