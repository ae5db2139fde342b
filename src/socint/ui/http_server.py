"""
Main HTTP server for the SOC-Inteligente SOAR API.

Serves the playbook execution endpoints.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..runtime import SoarRuntime
from .playbook_api import router as playbook_router

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[SoarRuntime] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        runtime: Engine runtime. If None, one is built from configuration
            on the first request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if app.state.runtime is not None:
            await app.state.runtime.aclose()

    app = FastAPI(
        title="SOC-Inteligente SOAR API",
        description="Playbook execution engine API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.runtime = runtime
    app.include_router(playbook_router)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "SOC-Inteligente SOAR API",
            "version": __version__,
            "endpoints": {
                "execute": "/playbooks/{id}/execute",
                "executions": "/executions/{id}",
                "validate": "/playbooks/{id}/validate",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


def main():
    """Main entry point for HTTP server."""
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))

    logger.info("=" * 60)
    logger.info("SOC-Inteligente SOAR - API Server")
    logger.info("=" * 60)
    logger.info(f"Host: {host}")
    logger.info(f"Port: {port}")
    logger.info(f"API Documentation: http://{host}:{port}/docs")
    logger.info("=" * 60)

    uvicorn.run(
        "socint.ui.http_server:app",
        host=host,
        port=port,
        reload=os.getenv("API_RELOAD", "false").lower() == "true",
    )


if __name__ == "__main__":
    main()
