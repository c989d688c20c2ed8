# api/services/review_engine.py
# ================================
# Review Engine - facade
# ================================
# One entry point for every reviewer-facing operation. Routers call this and
# nothing else; the components below it are synchronous and do their I/O
# through the IngestionStore, so the engine pushes them onto worker threads
# and serializes draft mutations per ingestion.
#
# Usage:
#   from api.services.review_engine import get_review_engine
#
#   engine = get_review_engine()
#   counts = await engine.assign_item(42, 7, "ITEM-001")
#   status = await engine.request_ready(42)

import asyncio
import logging
from typing import Any, Dict, List, Optional

from api.services.catalog_search import CatalogSearch
from api.services.draft_locks import KeyedLocks
from api.services.draft_payload import DraftReconciler, parse_draft
from api.services.ingestion_store import IngestionStore
from api.services.ingestion_views import IngestionViews
from api.services.line_matching import LineMatcher
from api.services.match_candidates import CandidateRanking
from api.services.readiness import ReadinessEngine, compute_ui_state
from api.services.review_errors import NotFound
from api.services.review_models import MatchCounts

logger = logging.getLogger(__name__)


async def _wait_out(work: asyncio.Future) -> None:
    """Wait until `work` finishes, ignoring further cancellations of the caller."""
    while not work.done():
        try:
            await asyncio.wait({work})
        except asyncio.CancelledError:
            continue
    if not work.cancelled() and work.exception() is not None:
        logger.error(f"[ReviewEngine] Abandoned mutation failed: {work.exception()}")


class ReviewEngine:
    def __init__(self, store, max_padding: Optional[int] = None):
        self.store = store
        self.catalog = CatalogSearch(store)
        self.candidates = CandidateRanking(store)
        self.matcher = LineMatcher(store, max_padding=max_padding)
        self.readiness = ReadinessEngine(store)
        self.reconciler = DraftReconciler(store)
        self.views = IngestionViews(store)
        self.draft_locks = KeyedLocks()

    async def _locked(self, ingestion_id: int, func, *args):
        """
        Run `func` on a worker thread while holding the ingestion's draft lock.

        The lock is held until the thread is done, even if the caller is
        cancelled: a thread cannot be stopped, and a second mutation must not
        start while the first is still writing.
        """
        async with self.draft_locks.hold(str(ingestion_id)):
            work = asyncio.ensure_future(asyncio.to_thread(func, *args))
            try:
                return await asyncio.shield(work)
            except asyncio.CancelledError:
                logger.warning(f"[ReviewEngine] ingestion={ingestion_id} caller cancelled, waiting for {func.__name__}")
                await _wait_out(work)
                raise

    # ========================================
    # Line matching
    # ========================================

    async def search_catalog(
        self, ingestion_id: int, query: str = "", limit: int = 20, offset: int = 0
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.catalog.search_for_ingestion, ingestion_id, query, limit, offset)

    async def list_candidates(self, line_id: int, top: int = 5) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.candidates.list_candidates, line_id, top)

    async def assign_item(self, ingestion_id: int, line_id: int, item_id: Optional[str]) -> MatchCounts:
        return await self._locked(ingestion_id, self.matcher.assign_item, ingestion_id, line_id, item_id)

    async def mark_needs_create(self, ingestion_id: int, line_id: int) -> MatchCounts:
        return await self._locked(ingestion_id, self.matcher.mark_needs_create, ingestion_id, line_id)

    # ========================================
    # Readiness
    # ========================================

    async def request_ready(self, ingestion_id: int) -> str:
        # same lock: the gate must not read lines mid-assignment
        return await self._locked(ingestion_id, self.readiness.request_ready, ingestion_id)

    # ========================================
    # Detail / housekeeping
    # ========================================

    def _load_review(self, ingestion_id: int):
        ingestion = self.store.get_ingestion(ingestion_id)
        if not ingestion:
            raise NotFound("ingestion", ingestion_id)
        storage_key = self.store.get_storage_key(ingestion["file_id"]) if ingestion.get("file_id") else None
        invoice = self.store.get_invoice_for_ingestion(ingestion_id)
        lines = self.store.list_lines(invoice["invoice_id"]) if invoice else []
        return ingestion, storage_key, invoice, lines

    async def get_detail(self, ingestion_id: int) -> Dict[str, Any]:
        """
        Ingestion (with UI state), its file's storage key, invoice, lines with
        fresh item names, match counts and the enriched draft.
        """
        ingestion, storage_key, invoice, lines = await asyncio.to_thread(self._load_review, ingestion_id)
        draft = parse_draft(ingestion.get("bill_payload_draft"))
        enriched = await self.reconciler.enrich(ingestion.get("org_id"), lines, draft)

        state = compute_ui_state(ingestion.get("status"), ingestion.get("approval_status"), ingestion.get("bill_payload_draft"))
        return {
            "ok": True,
            "ingestion": {**ingestion, "state": state.value},
            "storage_key": storage_key,
            "invoice": invoice,
            "lines": enriched.lines,
            "counts": MatchCounts.from_lines(lines).as_dict(),
            "draft": enriched.draft,
            "names_degraded": enriched.names_degraded,
        }

    def _delete(self, ingestion_id: int) -> None:
        if not self.store.get_ingestion(ingestion_id):
            raise NotFound("ingestion", ingestion_id)
        self.store.delete_ingestion(ingestion_id)
        logger.info(f"[ReviewEngine] ingestion={ingestion_id} deleted")

    async def delete_ingestion(self, ingestion_id: int) -> None:
        await self._locked(ingestion_id, self._delete, ingestion_id)

    async def ensure_ingestion(self, ingestion_id: int) -> Dict[str, Any]:
        ingestion = await asyncio.to_thread(self.store.get_ingestion, ingestion_id)
        if not ingestion:
            raise NotFound("ingestion", ingestion_id)
        return ingestion

    # ========================================
    # List / metrics
    # ========================================

    async def list_ingestions(self, state: Optional[str] = None, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        return await self.views.list_ingestions(state, page, page_size)

    async def metrics(self) -> Dict[str, int]:
        return await self.views.metrics()


_engine: Optional[ReviewEngine] = None


def get_review_engine() -> ReviewEngine:
    """FastAPI dependency: the process-wide engine (shared locks)."""
    global _engine
    if _engine is None:
        _engine = ReviewEngine(IngestionStore())
    return _engine
