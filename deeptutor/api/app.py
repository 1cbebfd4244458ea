"""
DeepTutor generation proxy service.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deeptutor.api.middleware.rate_limit import RateLimitMiddleware
from deeptutor.api.routes import health, proxy
from deeptutor.gateway.transports import DirectTransport
from deeptutor.shared.config import settings
from deeptutor.shared.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting DeepTutor proxy")

    transport = getattr(app.state, "transport", None) or DirectTransport()
    app.state.transport = transport
    if not transport.is_configured:
        logger.warning(f"No {transport.provider.value} API key configured; /api/generate will return 500")

    health.set_start_time(time.time())

    logger.info("DeepTutor proxy ready")
    yield

    logger.info("Shutting down DeepTutor proxy")
    await transport.aclose()
    logger.info("DeepTutor proxy stopped")


def create_app(transport: DirectTransport = None) -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="DeepTutor",
        description="Generation proxy for DeepTutor study workspaces",
        version="0.1.0",
        lifespan=lifespan,
    )
    if transport is not None:
        app.state.transport = transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting (after CORS so CORS headers applied first)
    app.add_middleware(RateLimitMiddleware)

    app.include_router(health.router)
    app.include_router(proxy.router)

    @app.get("/")
    async def root():
        return {"service": "deeptutor", "status": "running"}

    return app


app = create_app()


def main():
    """CLI entry point for uvicorn."""
    import uvicorn

    uvicorn.run(
        "deeptutor.api.app:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
