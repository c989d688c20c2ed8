# api/services/ingestion_store.py
# ================================
# Ingestion Store - data access
# ================================
# The only module that talks to Supabase for the review tables. Every method
# returns plain dict rows (or scalars) and raises UpstreamFailure when the
# PostgREST call fails.

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from postgrest.exceptions import APIError

from api.services.review_errors import UpstreamFailure
from api.services.review_models import ApprovalStatus

logger = logging.getLogger(__name__)

INGESTION_COLUMNS = (
    "ingestion_id, org_id, created_at, status, approval_status, approval_mode, "
    "bill_payload_draft, error, file_id"
)
INVOICE_COLUMNS = (
    "invoice_id, org_id, ingestion_id, vendor_name, vendor_gstin, bill_number, "
    "bill_date, grand_total, currency"
)
LINE_COLUMNS = (
    "line_id, invoice_id, line_no, description, quantity, rate, amount, "
    "item_name, match_state, item_id"
)
LIST_COLUMNS = (
    "ingestion_id, org_id, created_at, status, approval_status, approval_mode, "
    "bill_payload_draft, error, "
    "invoices ( invoice_id, vendor_name, grand_total, bill_number, bill_date )"
)
CANDIDATE_COLUMNS = "candidate_item_id, candidate_name, hsn8, similarity, reason, rank"


@dataclass(frozen=True)
class IngestionFilter:
    """Row filter shared by the list view and the metrics counters."""

    status: Optional[str] = None
    ready_only: bool = False
    created_since: Optional[str] = None


def _ilike_or_filter(columns: List[str], text: str) -> str:
    """Build a PostgREST `or` filter matching `text` as a substring of any column."""
    pattern = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    quoted = '"%' + pattern.replace("\\", "\\\\").replace('"', '\\"') + '%"'
    return ",".join(f"{col}.ilike.{quoted}" for col in columns)


def _first(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class IngestionStore:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from api.supabase_client import get_supabase

            self._client = get_supabase()
        return self._client

    def _execute(self, query, what: str):
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error(f"[IngestionStore] {what} failed: {e}")
            raise UpstreamFailure(f"{what} failed: {e}") from e

    # ========================================
    # Ingestions
    # ========================================

    def get_ingestion(self, ingestion_id: int) -> Optional[Dict[str, Any]]:
        q = self.client.table("ingestions").select(INGESTION_COLUMNS).eq("ingestion_id", ingestion_id).limit(1)
        return _first(self._execute(q, "fetch ingestion").data)

    def update_ingestion(self, ingestion_id: int, fields: Dict[str, Any]) -> None:
        q = self.client.table("ingestions").update(fields).eq("ingestion_id", ingestion_id)
        self._execute(q, "update ingestion")

    def delete_ingestion(self, ingestion_id: int) -> None:
        # invoices / invoice_lines go with it through ON DELETE CASCADE
        q = self.client.table("ingestions").delete().eq("ingestion_id", ingestion_id)
        self._execute(q, "delete ingestion")

    def get_storage_key(self, file_id: Any) -> Optional[str]:
        q = self.client.table("files").select("storage_key").eq("file_id", file_id).limit(1)
        row = _first(self._execute(q, "fetch file").data)
        return row.get("storage_key") if row else None

    def _apply_filter(self, query, flt: IngestionFilter):
        if flt.ready_only:
            query = query.eq("approval_status", ApprovalStatus.READY.value).not_.is_("bill_payload_draft", "null")
        if flt.status:
            query = query.eq("status", flt.status)
        if flt.created_since:
            query = query.gte("created_at", flt.created_since)
        return query

    def list_ingestions(self, flt: IngestionFilter, offset: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
        q = self.client.table("ingestions").select(LIST_COLUMNS, count="exact")
        q = self._apply_filter(q, flt).order("created_at", desc=True).range(offset, offset + limit - 1)
        resp = self._execute(q, "list ingestions")
        rows = resp.data or []
        return rows, resp.count if resp.count is not None else len(rows)

    def count_ingestions(self, flt: IngestionFilter) -> int:
        q = self.client.table("ingestions").select("ingestion_id", count="exact")
        q = self._apply_filter(q, flt).limit(1)
        return self._execute(q, "count ingestions").count or 0

    # ========================================
    # Invoices & lines
    # ========================================

    def get_invoice(self, invoice_id: int) -> Optional[Dict[str, Any]]:
        q = self.client.table("invoices").select(INVOICE_COLUMNS).eq("invoice_id", invoice_id).limit(1)
        return _first(self._execute(q, "fetch invoice").data)

    def get_invoice_for_ingestion(self, ingestion_id: int) -> Optional[Dict[str, Any]]:
        q = self.client.table("invoices").select(INVOICE_COLUMNS).eq("ingestion_id", ingestion_id).limit(1)
        return _first(self._execute(q, "fetch invoice").data)

    def get_line(self, line_id: int) -> Optional[Dict[str, Any]]:
        q = self.client.table("invoice_lines").select(LINE_COLUMNS).eq("line_id", line_id).limit(1)
        return _first(self._execute(q, "fetch line").data)

    def list_lines(self, invoice_id: int) -> List[Dict[str, Any]]:
        q = self.client.table("invoice_lines").select(LINE_COLUMNS).eq("invoice_id", invoice_id).order("line_no")
        return self._execute(q, "list lines").data or []

    def update_line(self, line_id: int, fields: Dict[str, Any]) -> None:
        q = self.client.table("invoice_lines").update(fields).eq("line_id", line_id)
        self._execute(q, "update line")

    def list_candidates(self, line_id: int, top: int) -> List[Dict[str, Any]]:
        q = (
            self.client.table("invoice_line_match_candidates")
            .select(CANDIDATE_COLUMNS)
            .eq("line_id", line_id)
            .order("rank")
            .order("similarity", desc=True)
            .limit(top)
        )
        return self._execute(q, "list candidates").data or []

    # ========================================
    # Catalog & vendors
    # ========================================

    def search_catalog(self, org_id: str, query: str, limit: int, offset: int) -> List[Dict[str, Any]]:
        q = (
            self.client.table("items_catalog_duplicate")
            .select("item_id, name, hsn8, sku")
            .eq("org_id", org_id)
        )
        if query:
            q = q.or_(_ilike_or_filter(["name", "sku"], query))
        q = q.order("name").range(offset, offset + limit - 1)
        return self._execute(q, "search catalog").data or []

    def lookup_item_names(self, org_id: str, item_ids: List[str]) -> Dict[str, Optional[str]]:
        if not item_ids:
            return {}
        q = (
            self.client.table("items_catalog_duplicate")
            .select("item_id, name")
            .eq("org_id", org_id)
            .in_("item_id", item_ids)
        )
        rows = self._execute(q, "lookup item names").data or []
        return {str(r["item_id"]): r.get("name") for r in rows}

    def lookup_vendor_names(self, org_id: str, vendor_ids: List[str]) -> Dict[str, Optional[str]]:
        if not vendor_ids:
            return {}
        q = (
            self.client.table("vendors")
            .select("vendor_id, name")
            .eq("org_id", org_id)
            .in_("vendor_id", vendor_ids)
        )
        rows = self._execute(q, "lookup vendor names").data or []
        return {str(r["vendor_id"]): r.get("name") for r in rows}
