# api/services/pipeline_client.py
# ================================
# Pipeline Client - external automation workflow
# ================================
# Triggers and proxies calls to the extraction/approval pipeline. The base
# URL is passed in explicitly through PipelineConfig; `from_env()` is only
# used once, when the app wires its dependencies.

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from api.services.review_errors import ConfigurationError, UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    base_url: str
    timeout: float = 30.0

    def __post_init__(self):
        if not self.base_url:
            raise ConfigurationError("pipeline base_url is required")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        base_url = os.getenv("PIPELINE_BASE_URL")
        if not base_url:
            raise ConfigurationError("PIPELINE_BASE_URL not configured")
        return cls(base_url=base_url, timeout=float(os.getenv("PIPELINE_TIMEOUT_SECONDS", "30")))

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


class PipelineClient:
    def __init__(self, config: PipelineConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, str]] = None,
        content: Optional[bytes] = None,
        json_body: Any = None,
    ) -> httpx.Response:
        """Send one request to the pipeline. Transport errors become UpstreamFailure; HTTP errors do not."""
        url = self.config.url(path)
        try:
            async with self._client() as client:
                return await client.request(
                    method,
                    url,
                    params=params,
                    content=content,
                    json=json_body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"[Pipeline] {method} {url} failed: {e}")
            raise UpstreamFailure(f"pipeline unreachable: {e}") from e

    async def _post(self, path: str, json_body: Any = None) -> Dict[str, Any]:
        resp = await self.request("POST", path, json_body=json_body)
        if resp.status_code >= 400:
            logger.error(f"[Pipeline] POST {path} -> {resp.status_code}: {resp.text[:200]}")
            raise UpstreamFailure(f"pipeline POST {path} failed: {resp.status_code}", upstream_status=resp.status_code)
        if "application/json" in resp.headers.get("content-type", ""):
            return resp.json()
        return {"text": resp.text}

    async def start_ingestion(self, ingestion_id: int) -> Dict[str, Any]:
        """Fire-and-forget: the pipeline only acknowledges that processing was queued."""
        logger.info(f"[Pipeline] Starting ingestion={ingestion_id}")
        return await self._post(f"/ingestions/{ingestion_id}/start")

    async def approve(self, ingestion_id: int) -> Dict[str, Any]:
        logger.info(f"[Pipeline] Approving ingestion={ingestion_id}")
        return await self._post(f"/approvals/{ingestion_id}/approve")

    async def reject(self, ingestion_id: int, reason: Optional[str] = None) -> Dict[str, Any]:
        logger.info(f"[Pipeline] Rejecting ingestion={ingestion_id}")
        return await self._post(f"/approvals/{ingestion_id}/reject", json_body={"reason": reason})


_client: Optional[PipelineClient] = None


def get_pipeline_client() -> PipelineClient:
    """FastAPI dependency. Raises ConfigurationError until PIPELINE_BASE_URL is set."""
    global _client
    if _client is None:
        _client = PipelineClient(PipelineConfig.from_env())
    return _client
