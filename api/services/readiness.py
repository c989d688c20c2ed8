# api/services/readiness.py
# ================================
# Ingestion Readiness Engine
# ================================
# Derives the single UI state shown for an ingestion and gates the
# "ready for approval" transition.

import logging
from typing import Any, Optional

from api.services.ingestion_store import IngestionFilter
from api.services.review_errors import NotFound, PreconditionFailed
from api.services.review_models import ApprovalStatus, MatchCounts, UiState

logger = logging.getLogger(__name__)

_STATUS_TO_UI = {
    "queued": UiState.QUEUED,
    "extracting": UiState.EXTRACTING,
    "matched": UiState.MATCHED,
    "posting": UiState.POSTING,
    "billed": UiState.BILLED,
    "failed": UiState.FAILED,
}


def is_ready_for_approval(approval_status: Optional[str], draft: Any) -> bool:
    """The Ready predicate, shared by the UI state, the list filter and the metrics."""
    return approval_status == ApprovalStatus.READY.value and draft is not None


def compute_ui_state(status: Optional[str], approval_status: Optional[str], draft: Any) -> UiState:
    """
    First match wins:
      1. approval 'ready' with a draft present -> Ready, whatever the raw status
      2. raw status, case-insensitive; unknown or missing -> Queued
    """
    if is_ready_for_approval(approval_status, draft):
        return UiState.READY
    return _STATUS_TO_UI.get((status or "").lower(), UiState.QUEUED)


def filter_for_state(state: Optional[str]) -> IngestionFilter:
    """Map a UI filter state to a store filter. 'All' or empty means no filter."""
    if not state or state == "All":
        return IngestionFilter()
    s = state.lower()
    if s == UiState.READY.value.lower():
        return IngestionFilter(ready_only=True)
    return IngestionFilter(status=s)


class ReadinessEngine:
    def __init__(self, store):
        self.store = store

    def request_ready(self, ingestion_id: int) -> str:
        """
        Move an ingestion to approval_status 'ready'.

        Only 'unmatched' lines block; 'to_create' lines do not. Raises
        PreconditionFailed (unmatched_lines / no_draft) without writing
        anything when a gate is not met.
        """
        ingestion = self.store.get_ingestion(ingestion_id)
        if not ingestion:
            raise NotFound("ingestion", ingestion_id)

        invoice = self.store.get_invoice_for_ingestion(ingestion_id)
        if not invoice:
            raise NotFound("invoice", ingestion_id)

        counts = MatchCounts.from_lines(self.store.list_lines(invoice["invoice_id"]))
        if counts.unmatched > 0:
            logger.info(f"[Readiness] ingestion={ingestion_id} blocked: {counts.unmatched} unmatched line(s)")
            raise PreconditionFailed.unmatched_lines(counts.unmatched)
        if ingestion.get("bill_payload_draft") is None:
            logger.info(f"[Readiness] ingestion={ingestion_id} blocked: no draft payload")
            raise PreconditionFailed.no_draft()

        self.store.update_ingestion(ingestion_id, {"approval_status": ApprovalStatus.READY.value})
        logger.info(f"[Readiness] ingestion={ingestion_id} marked ready")
        return ApprovalStatus.READY.value
