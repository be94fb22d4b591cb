from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cohort_reports.api.router import api_router
from cohort_reports.config import get_settings
from cohort_reports.core.logging import get_logger, setup_logging
from cohort_reports.dependencies import DBSession

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging()
    yield


app = FastAPI(
    title="Cohort Reports",
    description="Cohort course reports for cohort managers",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# Include report routes
app.include_router(api_router)


@app.get("/health")
async def health_check(db: DBSession) -> JSONResponse:
    """Health check for the host's load balancer; reports whether the site database answers."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.bind(error=str(e)).warning("health_check_database_unreachable")
        return JSONResponse(
            status_code=503, content={"status": "unhealthy", "database": "unreachable"}
        )
    return JSONResponse(content={"status": "healthy", "database": "ok"})
