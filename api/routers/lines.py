"""
Router para candidatos de match por línea
Tabla: invoice_line_match_candidates
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.services.review_engine import ReviewEngine, get_review_engine
from api.services.review_errors import ReviewError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lines", tags=["lines"])


@router.get("/{line_id}/candidates")
async def list_candidates(
    line_id: int,
    top: int = Query(5, description="Clamped to 1..20"),
    engine: ReviewEngine = Depends(get_review_engine),
):
    """
    Candidatos precalculados para la línea, por rank y luego similarity
    """
    try:
        items = await engine.list_candidates(line_id, top)
        return {"ok": True, "items": items, "count": len(items)}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[lines] Error fetching candidates for line {line_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error fetching candidates: {str(e)}")
