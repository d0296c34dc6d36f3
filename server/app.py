"""FastAPI application controlling custom API servers."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowengine.runtime.database import sqlite_resolver
from flowengine.utils.logging import setup_logging
from server.config import Settings, get_settings
from server.flow_routes import router as flow_router
from server.registry import ServerRegistry
from server.server_routes import router as server_router

VERSION = "0.1.0"


def create_app(settings: Settings | None = None, registry: ServerRegistry | None = None) -> FastAPI:
    """Build the admin app around a server registry."""
    settings = settings or get_settings()
    if registry is None:
        registry = ServerRegistry(settings, database_resolver=sqlite_resolver(settings.sqlite_data_dir))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Stop every custom API server on shutdown."""
        setup_logging(settings.log_level)
        yield
        await registry.close_all()

    app = FastAPI(
        title="Custom API Flow Server",
        description="Runs user-defined API endpoints backed by flow graphs",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(server_router, prefix="/api")
    app.include_router(flow_router, prefix="/api")

    @app.get("/")
    def root():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": VERSION,
            "servers": registry.connection_ids(),
            "endpoints": {
                "servers": "/api/servers",
                "flows": "/api/flows",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.admin_host, port=settings.admin_port)
