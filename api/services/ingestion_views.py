# api/services/ingestion_views.py
# ================================
# Ingestion List / Metrics Aggregator
# ================================
# Read-only projections over the ingestions table. The main query failing
# aborts the response; vendor names are decoration and fall back to the
# invoice's stored vendor name.

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from api.services.catalog_search import clamp
from api.services.ingestion_store import IngestionFilter
from api.services.readiness import compute_ui_state, filter_for_state
from api.services.review_errors import UpstreamFailure
from api.services.review_models import IngestionStatus

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
BILLED_WINDOW_DAYS = 30


def _linked_invoice(row: Dict[str, Any]) -> Dict[str, Any]:
    invoices = row.get("invoices")
    if isinstance(invoices, list):
        return invoices[0] if invoices else {}
    return invoices or {}


def _draft_field(row: Dict[str, Any], key: str) -> Optional[str]:
    draft = row.get("bill_payload_draft")
    if isinstance(draft, dict) and draft.get(key):
        return str(draft[key])
    return None


def _error_text(error: Any) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, (dict, list)):
        return json.dumps(error)
    return str(error)


class IngestionViews:
    def __init__(self, store):
        self.store = store

    def _vendor_names_for_org(self, org_id: str, vendor_ids: List[str]) -> Dict[str, Optional[str]]:
        try:
            return self.store.lookup_vendor_names(org_id, vendor_ids)
        except UpstreamFailure as e:
            logger.warning(f"[IngestionViews] Vendor lookup failed for org={org_id}: {e}")
            return {}

    async def _vendor_names(self, rows: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
        """One batched lookup per org; keys are 'org_id:vendor_id'."""
        by_org: Dict[str, Dict[str, None]] = {}
        for r in rows:
            vendor_id = _draft_field(r, "vendor_id")
            if vendor_id:
                by_org.setdefault(r.get("org_id"), {}).setdefault(vendor_id, None)

        orgs = list(by_org)
        results = await asyncio.gather(
            *(asyncio.to_thread(self._vendor_names_for_org, org, list(by_org[org])) for org in orgs)
        )
        names: Dict[str, Optional[str]] = {}
        for org, found in zip(orgs, results):
            for vendor_id, name in found.items():
                names[f"{org}:{vendor_id}"] = name
        return names

    def _to_item(self, row: Dict[str, Any], vendor_names: Dict[str, Optional[str]]) -> Dict[str, Any]:
        invoice = _linked_invoice(row)
        vendor_id = _draft_field(row, "vendor_id")
        draft_vendor = vendor_names.get(f"{row.get('org_id')}:{vendor_id}") if vendor_id else None
        return {
            "id": row.get("ingestion_id"),
            "created_at": row.get("created_at"),
            "state": compute_ui_state(row.get("status"), row.get("approval_status"), row.get("bill_payload_draft")).value,
            "approval_mode": row.get("approval_mode"),
            "ingestion_status": row.get("status"),
            "approval_status": row.get("approval_status"),
            "vendor_guess": draft_vendor or invoice.get("vendor_name") or None,
            "total_guess": invoice.get("grand_total"),
            "bill_number": _draft_field(row, "bill_number") or invoice.get("bill_number") or None,
            "error": _error_text(row.get("error")),
        }

    async def list_ingestions(
        self,
        state: Optional[str] = None,
        page: Optional[int] = 1,
        page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """Newest first. 'Ready' uses the same predicate as the readiness gate."""
        page = max(1, int(page or 1))
        page_size = clamp(page_size, 1, MAX_PAGE_SIZE, DEFAULT_PAGE_SIZE)
        offset = (page - 1) * page_size

        rows, count = await asyncio.to_thread(
            self.store.list_ingestions, filter_for_state(state), offset, page_size
        )
        vendor_names = await self._vendor_names(rows)
        return {"items": [self._to_item(r, vendor_names) for r in rows], "count": count}

    async def metrics(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Four independent counts. Any failing count fails the whole response."""
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=BILLED_WINDOW_DAYS)).isoformat()
        billed = IngestionStatus.BILLED.value
        filters = {
            "billed_30d": IngestionFilter(status=billed, created_since=since),
            "billed_total": IngestionFilter(status=billed),
            "ready_count": IngestionFilter(ready_only=True),
            "failed_count": IngestionFilter(status=IngestionStatus.FAILED.value),
        }
        counts = await asyncio.gather(
            *(asyncio.to_thread(self.store.count_ingestions, flt) for flt in filters.values())
        )
        return {key: int(value or 0) for key, value in zip(filters, counts)}
