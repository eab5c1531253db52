"""FastAPI application entry point.

Run with ``uvicorn classtally.api.main:app`` or ``classtally serve``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from classtally.acquisition.router import close_acquirer
from classtally.api.routes import router
from classtally.config import Settings, get_settings
from classtally.database.session import close_db, init_db


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application with routes mounted under ``/api``."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting {settings.app_name} v{settings.app_version} "
            f"(acquisition: {settings.acquisition_primary}, "
            f"fallback: {settings.acquisition_fallback})"
        )
        if settings.environment == "development":
            await init_db()
            logger.info("Database tables ensured")

        yield

        logger.info("Shutting down, releasing acquirer and database engine")
        await close_acquirer()
        await close_db()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="ClassTally API - utility class usage across repositories",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(f"Unhandled store error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Storage is temporarily unavailable"},
        )

    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "analyze": "/api/repositories/analyze",
            "leaderboard": "/api/global",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "classtally.api.main:app",
        host=_settings.api_host,
        port=_settings.api_port,
        reload=_settings.debug,
    )
