import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from erp.core.config import settings
from erp.core.database import engine
from erp.core.logging_config import setup_logging
from erp.db.base import Base
from erp.middleware.logging import LoggingMiddleware
from erp.services.concurrency import StockLockRegistry
from erp.services.notification.channel_hub import ChannelHub
from erp.api.v1.api import api_router
import erp.models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.DATABASE_URL.startswith("sqlite"):
        # Development databases are created in place; others go through alembic
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLite schema ensured")
    logger.info(f"ERP backend started ({settings.ENVIRONMENT})")
    yield
    await engine.dispose()
    logger.info("ERP backend stopped")

def create_app() -> FastAPI:
    app = FastAPI(
        title="ERP Inventory Service",
        description="Inventory ledger, stock counts and realtime notifications",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Application-scoped collaborators
    app.state.channel_hub = ChannelHub()
    app.state.lock_registry = StockLockRegistry()

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=settings.ALLOWED_METHODS,
        allow_headers=settings.ALLOWED_HEADERS,
    )
    app.add_middleware(LoggingMiddleware)

    # Include routers
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "message": "ERP inventory service",
            "status": "active",
            "version": app.version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "realtime": app.state.channel_hub.get_stats()["current_connections"],
                "environment": settings.ENVIRONMENT,
            },
        }

    return app

app = create_app()
