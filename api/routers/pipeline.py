# api/routers/pipeline.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from api.services.pipeline_client import PipelineClient, get_pipeline_client
from api.services.review_engine import ReviewEngine, get_review_engine
from api.services.review_errors import ReviewError
from api.services.review_models import UiState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])


class RejectRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/ingestions/{ingestion_id}/start")
async def start_ingestion(
    ingestion_id: int,
    engine: ReviewEngine = Depends(get_review_engine),
    pipeline: PipelineClient = Depends(get_pipeline_client),
):
    """
    Dispara el procesamiento en el pipeline externo (fire-and-forget).
    La respuesta sólo confirma que quedó en cola: el estado reportado es Queued.
    """
    try:
        await engine.ensure_ingestion(ingestion_id)
        await pipeline.start_ingestion(ingestion_id)
        return {"ok": True, "ingestion_id": ingestion_id, "state": UiState.QUEUED.value}
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())


@router.post("/approvals/{ingestion_id}/approve")
async def approve_ingestion(ingestion_id: int, pipeline: PipelineClient = Depends(get_pipeline_client)):
    try:
        return await pipeline.approve(ingestion_id)
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())


@router.post("/approvals/{ingestion_id}/reject")
async def reject_ingestion(
    ingestion_id: int,
    body: Optional[RejectRequest] = None,
    pipeline: PipelineClient = Depends(get_pipeline_client),
):
    try:
        return await pipeline.reject(ingestion_id, body.reason if body else None)
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())


@router.api_route("/pipeline/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy(path: str, request: Request, pipeline: PipelineClient = Depends(get_pipeline_client)):
    """
    Proxy hacia el pipeline para clientes que no pueden llamarlo directo (CORS).
    Status y body se devuelven tal cual.
    """
    body = await request.body() if request.method not in ("GET", "HEAD") else None
    try:
        resp = await pipeline.request(request.method, path, params=dict(request.query_params), content=body or None)
    except ReviewError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_http_detail())

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        media_type=resp.headers.get("content-type", "application/json"),
    )
