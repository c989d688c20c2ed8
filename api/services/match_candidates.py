# api/services/match_candidates.py
# ================================
# Candidate Ranking Accessor
# ================================
# Candidates are produced by the matching pipeline. Rank is the curated
# order; similarity only breaks ties between equal ranks.

from typing import Any, Dict, List, Optional

from api.services.catalog_search import clamp
from api.services.review_errors import NotFound

DEFAULT_TOP = 5
MAX_TOP = 20


def _sort_key(row: Dict[str, Any]):
    rank = row.get("rank")
    similarity = row.get("similarity")
    return (
        rank is None,
        rank if rank is not None else 0,
        -(similarity if similarity is not None else 0.0),
    )


def to_candidate(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "item_id": row.get("candidate_item_id"),
        "name": row.get("candidate_name"),
        "hsn_or_sac": row.get("hsn8"),
        "similarity": row.get("similarity"),
        "reason": row.get("reason"),
        "rank": row.get("rank"),
    }


class CandidateRanking:
    def __init__(self, store):
        self.store = store

    def list_candidates(self, line_id: int, top: Optional[int] = DEFAULT_TOP) -> List[Dict[str, Any]]:
        top = clamp(top, 1, MAX_TOP, DEFAULT_TOP)
        if not self.store.get_line(line_id):
            raise NotFound("line", line_id)
        rows = self.store.list_candidates(line_id, top)
        # the store already orders; re-sort so the rank contract holds regardless
        return [to_candidate(r) for r in sorted(rows, key=_sort_key)[:top]]
