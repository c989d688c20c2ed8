from pathlib import Path
from dotenv import load_dotenv
import logging
import os

# ========================================
# Load .env from the project root
# ========================================
BASE_DIR = Path(__file__).resolve().parent.parent
env_path = BASE_DIR / ".env"
load_dotenv(env_path)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers.ingestions import router as ingestions_router
from api.routers.lines import router as lines_router
from api.routers.pipeline import router as pipeline_router
from api.services.review_errors import ReviewError

logger = logging.getLogger(__name__)


# ========================================
# Initialize FastAPI
# ========================================
app = FastAPI(title="Bill Review API")


# ========================================
# CORS (review console frontend)
# ========================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Errors raised outside a route body (dependencies)
# ========================================
@app.exception_handler(ReviewError)
async def review_error_handler(request: Request, exc: ReviewError):
    logger.warning(f"[main] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_http_detail()})


# ========================================
# Register routers
# ========================================

# Ingestion review: detail, list, metrics, line matching, readiness
app.include_router(ingestions_router)

# Match candidates per line
app.include_router(lines_router)

# External pipeline: start, approvals, proxy
app.include_router(pipeline_router)


# ========================================
# Root
# ========================================
@app.get("/")
def root():
    return {"message": "Bill Review API running"}
