"""
FastAPI application for StoreSync.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .core.config import get_config
from .core.logging import setup_logging
from .core.database import get_database
from .api.routes import health, sync, connections, diagnostics
from .sync.service import stop_sync_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize logging and database
    config = get_config()
    setup_logging(
        log_file=config.log_path,
        level=config.log_level
    )
    get_database()
    yield
    stop_sync_service(wait=False)


def create_app() -> FastAPI:
    app = FastAPI(
        title="StoreSync API",
        description="Synchronizes WooCommerce stores into a local database",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, prefix="/api")
    app.include_router(sync.router, prefix="/api")
    app.include_router(connections.router, prefix="/api")
    app.include_router(diagnostics.router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "StoreSync API",
            "version": __version__,
            "docs": "/docs"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storesync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
