"""
Router para revisión de Ingestions (bills subidos y extraídos por el pipeline)
Tablas: ingestions, invoices, invoice_lines, items_catalog_duplicate
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.services.review_engine import ReviewEngine, get_review_engine
from api.services.review_errors import ReviewError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingestions", tags=["ingestions"])


# ========================================
# Modelos Pydantic
# ========================================

class AssignItemRequest(BaseModel):
    item_id: Optional[str] = None


# ========================================
# List / metrics
# ========================================

@router.get("/list")
async def list_ingestions(
    state: Optional[str] = Query(None, description="UI state filter (Ready, Failed, ...) or All"),
    page: int = Query(1),
    page_size: int = Query(50, description="Clamped to 1..200"),
    engine: ReviewEngine = Depends(get_review_engine),
):
    """
    Lista ingestions (más recientes primero) con su estado de UI derivado
    y los "guesses" de vendor / total / bill number.
    """
    try:
        return await engine.list_ingestions(state, page, page_size)
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error listing ingestions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error listing ingestions: {str(e)}")


@router.get("/metrics")
async def get_metrics(engine: ReviewEngine = Depends(get_review_engine)):
    """
    Contadores: billed últimos 30 días, billed total, ready, failed.
    Si cualquiera falla, falla toda la respuesta.
    """
    try:
        return await engine.metrics()
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error computing metrics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error computing metrics: {str(e)}")


# ========================================
# Detail
# ========================================

@router.get("/{ingestion_id}")
async def get_ingestion(ingestion_id: int, engine: ReviewEngine = Depends(get_review_engine)):
    """
    Detalle: ingestion, invoice, líneas con nombres de item resueltos,
    counts y el draft enriquecido.
    """
    try:
        return await engine.get_detail(ingestion_id)
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error fetching ingestion {ingestion_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error fetching ingestion: {str(e)}")


@router.delete("/{ingestion_id}")
async def delete_ingestion(ingestion_id: int, engine: ReviewEngine = Depends(get_review_engine)):
    """
    Elimina un ingestion (invoice y líneas se van en cascada)
    """
    try:
        await engine.delete_ingestion(ingestion_id)
        return {"ok": True}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error deleting ingestion {ingestion_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting ingestion: {str(e)}")


# ========================================
# Catalog / line matching
# ========================================

@router.get("/{ingestion_id}/items")
async def search_items(
    ingestion_id: int,
    q: str = Query("", description="Substring of item name or SKU"),
    limit: int = Query(20, description="Clamped to 1..50"),
    offset: int = Query(0),
    engine: ReviewEngine = Depends(get_review_engine),
):
    """
    Busca items del catálogo de la org del ingestion
    """
    try:
        items = await engine.search_catalog(ingestion_id, q, limit, offset)
        return {"ok": True, "items": items, "count": len(items)}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error searching catalog for {ingestion_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error searching catalog: {str(e)}")


@router.post("/{ingestion_id}/lines/{line_id}/assign")
async def assign_item(
    ingestion_id: int,
    line_id: int,
    body: Optional[AssignItemRequest] = None,
    engine: ReviewEngine = Depends(get_review_engine),
):
    """
    Asigna un item del catálogo a la línea (human_matched) y actualiza el draft
    """
    try:
        counts = await engine.assign_item(ingestion_id, line_id, body.item_id if body else None)
        return {"ok": True, "counts": counts.as_dict()}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error assigning line {line_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error assigning item: {str(e)}")


@router.post("/{ingestion_id}/lines/{line_id}/needs-create")
async def mark_needs_create(
    ingestion_id: int,
    line_id: int,
    engine: ReviewEngine = Depends(get_review_engine),
):
    """
    Marca la línea como "needs create" (no existe item en el catálogo)
    """
    try:
        counts = await engine.mark_needs_create(ingestion_id, line_id)
        return {"ok": True, "counts": counts.as_dict()}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error marking line {line_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error marking line: {str(e)}")


# ========================================
# Readiness
# ========================================

@router.post("/{ingestion_id}/ready")
async def request_ready(ingestion_id: int, engine: ReviewEngine = Depends(get_review_engine)):
    """
    Pasa el ingestion a approval_status=ready.
    409 si quedan líneas unmatched (con counts) o no hay draft.
    """
    try:
        approval_status = await engine.request_ready(ingestion_id)
        return {"ok": True, "approval_status": approval_status}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())
    except Exception as e:
        logger.error(f"[ingestions] Error requesting ready for {ingestion_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error requesting ready: {str(e)}")
