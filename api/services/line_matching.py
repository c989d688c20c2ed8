# api/services/line_matching.py
# ================================
# Line Match State Machine
# ================================
# Reviewer actions on a single invoice line. Each action writes the line
# first and the draft second, so re-running the same call after an
# interruption converges on the same end state.

import logging
from typing import Any, Dict, Optional, Tuple

from api.services.draft_payload import (
    MAX_DRAFT_PADDING,
    clear_line_item_id,
    dump_draft,
    parse_draft,
    set_line_item_id,
)
from api.services.review_errors import NotFound, ValidationError
from api.services.review_models import MatchCounts, MatchState

logger = logging.getLogger(__name__)

# Reviewer-driven transitions. auto_matched and created are set by the
# pipeline only; created is terminal for reviewers.
REVIEWER_TRANSITIONS = {
    MatchState.UNMATCHED: {MatchState.HUMAN_MATCHED, MatchState.TO_CREATE},
    MatchState.AUTO_MATCHED: {MatchState.HUMAN_MATCHED, MatchState.TO_CREATE},
    MatchState.HUMAN_MATCHED: {MatchState.HUMAN_MATCHED, MatchState.TO_CREATE},
    MatchState.TO_CREATE: {MatchState.HUMAN_MATCHED, MatchState.TO_CREATE},
    MatchState.CREATED: set(),
}


def check_transition(current: Any, target: MatchState) -> None:
    state = MatchState.parse(current) or MatchState.UNMATCHED
    if target not in REVIEWER_TRANSITIONS[state]:
        raise ValidationError(
            f"line in state '{state.value}' cannot move to '{target.value}'",
            match_state=state.value,
        )


class LineMatcher:
    def __init__(self, store, max_padding: Optional[int] = None):
        self.store = store
        self.max_padding = MAX_DRAFT_PADDING if max_padding is None else max_padding

    def _resolve_line(self, ingestion_id: int, line_id: int) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Load a line and its invoice, refusing lines that belong to another ingestion."""
        line = self.store.get_line(line_id)
        if not line:
            raise NotFound("line", line_id)
        invoice = self.store.get_invoice(line["invoice_id"])
        if not invoice:
            raise NotFound("invoice", line["invoice_id"])
        if str(invoice.get("ingestion_id")) != str(ingestion_id):
            logger.warning(
                f"[LineMatcher] line={line_id} belongs to ingestion={invoice.get('ingestion_id')}, "
                f"not {ingestion_id}"
            )
            raise ValidationError("ingestion/line mismatch", line_id=line_id, ingestion_id=ingestion_id)
        return line, invoice

    def _load_ingestion(self, ingestion_id: int) -> Dict[str, Any]:
        ingestion = self.store.get_ingestion(ingestion_id)
        if not ingestion:
            raise NotFound("ingestion", ingestion_id)
        return ingestion

    def counts(self, invoice_id: int) -> MatchCounts:
        return MatchCounts.from_lines(self.store.list_lines(invoice_id))

    def assign_item(self, ingestion_id: int, line_id: int, item_id: Optional[str]) -> MatchCounts:
        """
        Assign a catalog item to a line (-> human_matched) and mirror the
        item id into the draft entry at line_no - 1, padding the draft with
        empty entries if it has fewer lines than the invoice.

        Every check, including the draft drift cap, runs before the first
        write.
        """
        item_id = item_id.strip() if isinstance(item_id, str) else None
        if not item_id:
            raise ValidationError("item_id required")

        line, invoice = self._resolve_line(ingestion_id, line_id)
        check_transition(line.get("match_state"), MatchState.HUMAN_MATCHED)

        ingestion = self._load_ingestion(ingestion_id)
        draft = set_line_item_id(
            parse_draft(ingestion.get("bill_payload_draft")),
            line.get("line_no"),
            item_id,
            self.max_padding,
        )

        self.store.update_line(line_id, {"item_id": item_id, "match_state": MatchState.HUMAN_MATCHED.value})
        self.store.update_ingestion(ingestion_id, {"bill_payload_draft": dump_draft(draft)})
        logger.info(f"[LineMatcher] ingestion={ingestion_id} line={line_id} assigned item={item_id}")

        return self.counts(invoice["invoice_id"])

    def mark_needs_create(self, ingestion_id: int, line_id: int) -> MatchCounts:
        """Flag a line as needing a new catalog item (-> to_create), unassigning any item."""
        line, invoice = self._resolve_line(ingestion_id, line_id)
        check_transition(line.get("match_state"), MatchState.TO_CREATE)

        ingestion = self._load_ingestion(ingestion_id)
        current = parse_draft(ingestion.get("bill_payload_draft"))
        cleared = clear_line_item_id(current, line.get("line_no"))

        self.store.update_line(line_id, {"item_id": None, "match_state": MatchState.TO_CREATE.value})
        if cleared is not current:
            self.store.update_ingestion(ingestion_id, {"bill_payload_draft": dump_draft(cleared)})
        logger.info(f"[LineMatcher] ingestion={ingestion_id} line={line_id} marked to_create")

        return self.counts(invoice["invoice_id"])
