from coursemedia.core.env import load_env
load_env()
# Initialize structured logging early
from coursemedia.core.config import settings
from coursemedia.core.logging import configure_logging
configure_logging(settings.LOG_LEVEL)

import datetime
import time
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from coursemedia.core.errors import CourseMediaError, course_media_error_handler
from coursemedia.core.logging import get_logger
from coursemedia.db.base import Base
from coursemedia.db.deps import get_db
from coursemedia.db.session import engine
from coursemedia.middleware.logging import logging_middleware
import coursemedia.models  # noqa: F401  registers every table on Base.metadata

# Import routers from modules
from coursemedia.modules.assets.routes import router as assets_router
from coursemedia.modules.content.routes import router as content_router
from coursemedia.modules.jobs.routes import router as jobs_router
from coursemedia.modules.workflows.routes import router as workflows_router

logger = get_logger(__name__)

# Record process start time for uptime reporting
_START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_DB_SCHEMA:
        Base.metadata.create_all(bind=engine)
        logger.info("database schema ensured")
    yield


app = FastAPI(title="coursemedia API", lifespan=lifespan)
app.add_exception_handler(CourseMediaError, course_media_error_handler)
app.middleware("http")(logging_middleware)

# Create main API router
api_router = APIRouter()
api_router.include_router(assets_router)
api_router.include_router(workflows_router)
api_router.include_router(content_router)
api_router.include_router(jobs_router)

app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/health")
async def health():
    """Simple health endpoint returning status, uptime, and timestamp."""
    uptime = time.time() - _START_TIME
    payload = {
        "status": "ok",
        "uptime_seconds": round(uptime, 2),
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    return JSONResponse(content=payload)


@app.get("/db/health")
def db_health_sa(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"db": "ok"}


logger.info("fastapi process started")
