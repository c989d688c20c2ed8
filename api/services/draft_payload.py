# api/services/draft_payload.py
# ================================
# Draft Payload - model & reconciler
# ================================
# The draft (`ingestions.bill_payload_draft`) is the bill as currently
# proposed for posting. The pipeline writes it first; afterwards only the
# reconciler touches it, keeping line_items[line_no - 1] in step with the
# relational invoice line.

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from api.services.review_errors import UpstreamFailure, ValidationError
from api.services.review_models import NameLookup

logger = logging.getLogger(__name__)

MAX_DRAFT_PADDING = int(os.getenv("MAX_DRAFT_PADDING", "25"))


# ========================================
# Modelos Pydantic
# ========================================

class BillDraft(BaseModel):
    """
    Envelope of the stored draft. Header values are kept as stored (no
    coercion) and line items stay plain dicts, so whatever the pipeline
    wrote ("10%" discounts, "120.50" rates, numeric ids) round-trips as is.
    """

    model_config = ConfigDict(extra="allow")

    vendor_id: Any = None
    date: Any = None
    due_date: Any = None
    bill_number: Any = None
    discount_type: Any = None
    is_item_level_tax_calc: Any = None
    line_items: List[Any] = []

    @field_validator("line_items", mode="before")
    @classmethod
    def _line_items_list(cls, value):
        # anything that is not a list is read as "no lines"
        return value if isinstance(value, list) else []


class DraftDriftError(ValidationError):
    """The draft is too far behind the relational lines to pad safely."""

    code = "draft_drift"


# ========================================
# Helpers
# ========================================

def parse_draft(raw: Any) -> Optional[BillDraft]:
    """Parse a stored draft document. None stays None."""
    if raw is None:
        return None
    if isinstance(raw, BillDraft):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("draft payload is not an object")
    try:
        return BillDraft.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"draft payload is malformed: {e.error_count()} error(s)") from e


def dump_draft(draft: BillDraft) -> Dict[str, Any]:
    """Serialize back to the stored shape, keeping unknown keys and only the fields that were present."""
    return draft.model_dump(exclude_unset=True)


def line_index(line_no: Optional[int]) -> int:
    return max(0, (line_no or 1) - 1)


def id_key(value: Any) -> Optional[str]:
    """Stored ids may be numbers or strings; lookups are keyed by the string form."""
    if value is None or value == "":
        return None
    return str(value)


def entry_item_id(entry: Any) -> Optional[str]:
    """The item id of a draft entry, or None for holes and unassigned entries."""
    return id_key(entry.get("item_id")) if isinstance(entry, dict) else None


def pad_line_items(
    items: List[Any],
    index: int,
    max_padding: int = MAX_DRAFT_PADDING,
) -> List[Any]:
    """
    Return a copy of `items` long enough to hold `index`, padded with empty
    placeholder entries. Existing entries are kept as they are.

    Raises DraftDriftError when more than `max_padding` placeholders would be
    needed.
    """
    padded = list(items)
    missing = index + 1 - len(padded)
    if missing <= 0:
        return padded
    if missing > max_padding:
        logger.warning(
            f"[DraftPayload] Refusing to pad {missing} placeholder line(s) "
            f"(draft has {len(items)}, index {index}, cap {max_padding})"
        )
        raise DraftDriftError(
            "draft line items drifted too far from invoice lines",
            draft_lines=len(items),
            line_no=index + 1,
            max_padding=max_padding,
        )
    padded.extend({} for _ in range(missing))
    return padded


def set_line_item_id(
    draft: Optional[BillDraft],
    line_no: Optional[int],
    item_id: str,
    max_padding: int = MAX_DRAFT_PADDING,
) -> BillDraft:
    """Return a new draft whose entry for `line_no` points at `item_id`. Other entries are untouched."""
    updated = draft.model_copy(deep=True) if draft is not None else BillDraft(line_items=[])
    idx = line_index(line_no)
    items = pad_line_items(updated.line_items, idx, max_padding)
    entry = items[idx] if isinstance(items[idx], dict) else {}
    items[idx] = {**entry, "item_id": item_id}
    updated.line_items = items
    return updated


def clear_line_item_id(draft: Optional[BillDraft], line_no: Optional[int]) -> Optional[BillDraft]:
    """Return a new draft with the entry for `line_no` unassigned. Never pads."""
    if draft is None:
        return None
    idx = line_index(line_no)
    if idx >= len(draft.line_items) or not isinstance(draft.line_items[idx], dict):
        return draft
    updated = draft.model_copy(deep=True)
    items = list(updated.line_items)
    items[idx] = {**items[idx], "item_id": None}
    updated.line_items = items
    return updated


def referenced_item_ids(lines: Iterable[Dict[str, Any]], draft: Optional[BillDraft]) -> List[str]:
    """Distinct item ids referenced by the relational lines or the draft, in first-seen order."""
    seen: Dict[str, None] = {}
    for line in lines:
        if line.get("item_id"):
            seen.setdefault(str(line["item_id"]), None)
    if draft is not None:
        for entry in draft.line_items:
            item_id = entry_item_id(entry)
            if item_id:
                seen.setdefault(item_id, None)
    return list(seen)


# ========================================
# Enrichment
# ========================================

@dataclass
class EnrichedReview:
    lines: List[Dict[str, Any]] = field(default_factory=list)
    draft: Optional[Dict[str, Any]] = None
    names_degraded: bool = False


def enrich_lines(lines: Iterable[Dict[str, Any]], item_names: NameLookup) -> List[Dict[str, Any]]:
    enriched = []
    for line in lines:
        fresh = item_names.get(str(line["item_id"])) if line.get("item_id") else None
        enriched.append({**line, "item_name": fresh or line.get("item_name")})
    return enriched


def enrich_draft(draft: BillDraft, vendor_name: Optional[str], item_names: NameLookup) -> Dict[str, Any]:
    return {
        "date": draft.date,
        "due_date": draft.due_date,
        "bill_number": draft.bill_number,
        "discount_type": draft.discount_type,
        "is_item_level_tax_calc": bool(draft.is_item_level_tax_calc),
        "vendor_id": draft.vendor_id,
        "vendor_name": vendor_name,
        "line_items": [
            {**(entry if isinstance(entry, dict) else {}), "item_name": item_names.get(entry_item_id(entry))}
            for entry in draft.line_items
        ],
    }


class DraftReconciler:
    """Resolves display names for a review and merges them into lines and draft.

    Ids are the source of truth; names are decoration. A failing lookup marks
    the result as degraded and never fails the read.
    """

    def __init__(self, store):
        self.store = store

    def _lookup_items(self, org_id: str, item_ids: List[str]) -> NameLookup:
        if not item_ids:
            return NameLookup()
        try:
            return NameLookup(names=self.store.lookup_item_names(org_id, item_ids))
        except UpstreamFailure as e:
            logger.warning(f"[DraftReconciler] Item name lookup failed for org={org_id}: {e}")
            return NameLookup.failed()

    def _lookup_vendor(self, org_id: str, vendor_id: Optional[str]) -> NameLookup:
        if not vendor_id:
            return NameLookup()
        try:
            name = self.store.lookup_vendor_names(org_id, [vendor_id]).get(vendor_id)
            return NameLookup(names={vendor_id: name})
        except UpstreamFailure as e:
            logger.warning(f"[DraftReconciler] Vendor name lookup failed for org={org_id}: {e}")
            return NameLookup.failed()

    async def enrich(
        self,
        org_id: str,
        lines: List[Dict[str, Any]],
        draft: Optional[BillDraft],
    ) -> EnrichedReview:
        item_ids = referenced_item_ids(lines, draft)
        vendor_id = id_key(draft.vendor_id) if draft is not None else None

        vendor_lookup, item_lookup = await asyncio.gather(
            asyncio.to_thread(self._lookup_vendor, org_id, vendor_id),
            asyncio.to_thread(self._lookup_items, org_id, item_ids),
        )

        return EnrichedReview(
            lines=enrich_lines(lines, item_lookup),
            draft=enrich_draft(draft, vendor_lookup.get(vendor_id), item_lookup) if draft is not None else None,
            names_degraded=vendor_lookup.degraded or item_lookup.degraded,
        )
