"""
FastAPI application entry point for methodlab.

Provides REST API for:
- Analytical standards search, details and comparison
- Method Card generation runs (Draft -> QC/Finalize)
- Real-time run progress via SSE
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from methodlab import __version__
from methodlab.config import settings
from methodlab.routers import method_cards, standards


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting methodlab application...")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set - generation calls will fail")
    logger.info(
        f"Model: {settings.gemini_model}, parse policy: {settings.parse_policy}, "
        f"timeout: {settings.request_timeout_seconds:.0f}s"
    )
    yield

    # Shutdown
    logger.info("Shutting down methodlab application...")


# Create FastAPI application
app = FastAPI(
    title="methodlab",
    description="Analytical standards lookup and Method Card generation",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "model": settings.gemini_model,
    }


app.include_router(standards.router, prefix="/api/v1/standards", tags=["standards"])
app.include_router(method_cards.router, prefix="/api/v1/method-cards", tags=["method-cards"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "methodlab.main:app",
        host="0.0.0.0",
        port=8080,
        reload=settings.debug,
    )
