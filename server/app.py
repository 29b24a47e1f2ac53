"""
FastAPI Application Entry Point
==============================

The Needs AI service, deployed as a Databricks App.

Deployment:
    This app is deployed to Databricks Apps platform using app.yaml config.
    The entry point is: uvicorn server.app:app --host 0.0.0.0 --port 8000

Local Development:
    uvicorn server.app:app --reload --host 0.0.0.0 --port 8000
    Set APP_MOCK_MODE=true to run tools with canned results.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from needs_ai import __version__
from needs_ai.api import get_registry
from needs_ai.config import get_settings
from needs_ai.router import router as needs_router
from server.routers import health

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events for startup/shutdown."""
    logger.info("🚀 Starting Needs AI...")
    logger.info(f"   Environment: {settings.environment}")
    logger.info(f"   Log Level: {settings.log_level}")
    logger.info(f"   Serving endpoint: {settings.serving_endpoint}")
    if settings.mock_mode:
        logger.info("   Mock mode: tools return canned results")

    registry = get_registry()
    logger.info(
        f"   Loaded {len(registry.list_flows())} flows, {len(registry.list_tools())} tools"
    )

    yield

    logger.info("👋 Shutting down Needs AI...")


# Create FastAPI app
app = FastAPI(
    title="Needs AI",
    description="""
    Prompt-driven, tool-aware flows for the YOLO Needs app.

    ## Features
    - Need analysis, chat support, hiring and candidate flows
    - Provider directory lookup and smart search
    - Web search with summarization

    ## Quick Links
    - [API Documentation](/docs)
    - [Health Check](/health)
    - [Flows](/api/flows)
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": None if get_settings().is_production else str(exc),
        }
    )


# CORS middleware - allows frontend to call API
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",  # Alternative dev port
        "*",  # Allow all origins (customize for production)
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routers
app.include_router(health.router, tags=["Health"])
app.include_router(needs_router, prefix="/api")


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint."""
    return {
        "message": "Needs AI is running 🚀",
        "status": "running",
        "version": __version__,
        "endpoints": {
            "api_docs": "/docs",
            "health": "/health",
            "flows": "/api/flows",
            "providers": "/api/providers",
        },
    }
