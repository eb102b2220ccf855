from contextlib import asynccontextmanager
import logging
import sys

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
import uvicorn

from autocompliance.core.config import settings
from autocompliance.db.base import Base
from autocompliance.db.session import engine
from autocompliance.compliance import models  # noqa: F401  (registers tables on Base.metadata)
from autocompliance.compliance.api import router as compliance_router
from autocompliance.compliance.config import settings as compliance_settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting up %s %s (%s)...", settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT.value)

    try:
        existing_tables = inspect(engine).get_table_names()
        required_tables = [table.name for table in Base.metadata.tables.values()]
        missing_tables = [table for table in required_tables if table not in existing_tables]
        if missing_tables:
            logger.warning(f"Missing database tables: {missing_tables}")
            logger.warning("Run `alembic upgrade head` before starting the server")
        else:
            logger.info("All required database tables exist")
    except SQLAlchemyError as e:
        logger.warning(f"Could not check database tables: {e}")

    yield

    logger.info("Shutting down %s...", settings.PROJECT_NAME)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
    app.include_router(compliance_router, prefix=f"{settings.API_V1_STR}/compliance", tags=["compliance"])

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": settings.PROJECT_NAME, "version": settings.VERSION}

    if compliance_settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "autocompliance.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.ENVIRONMENT.value == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
