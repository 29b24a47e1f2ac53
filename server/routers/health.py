"""
Health Check Router
==================

Provides health check and readiness endpoints for monitoring.
These are essential for Databricks Apps platform to verify the app is running.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from needs_ai import __version__
from needs_ai.api import get_registry
from needs_ai.config import get_settings
from needs_ai.directory import get_directory_store
from needs_ai.errors import DirectoryStoreError

logger = logging.getLogger(__name__)
router = APIRouter()


class HealthStatus(BaseModel):
    """Health check response model."""
    status: str
    service: str
    version: str
    environment: str
    timestamp: str


class ReadinessStatus(BaseModel):
    """Readiness check response model."""
    ready: bool
    checks: dict
    timestamp: str


class DatabricksStatus(BaseModel):
    """Databricks connection status."""
    connected: bool
    workspace: Optional[str] = None
    user: Optional[str] = None
    error: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """
    Health check endpoint.

    Returns:
        HealthStatus: Health status including service name and version
    """
    return HealthStatus(
        status="healthy",
        service="needs-ai",
        version=__version__,
        environment=get_settings().environment,
        timestamp=_now(),
    )


@router.get("/ready", response_model=ReadinessStatus)
async def readiness_check() -> ReadinessStatus:
    """
    Readiness check endpoint.

    The app is ready when the flow registry has loaded and the provider
    directory can be read.
    """
    checks = {"app": "ok"}

    try:
        registry = get_registry()
        checks["registry"] = "ok" if registry.list_flows() else "no_flows"
    except Exception as e:
        logger.warning(f"Registry check failed: {e}")
        checks["registry"] = "error"

    try:
        await get_directory_store().get_all()
        checks["directory"] = "ok"
    except DirectoryStoreError as e:
        logger.warning(f"Directory check failed: {e}")
        checks["directory"] = "error"

    return ReadinessStatus(
        ready=all(v == "ok" for v in checks.values()),
        checks=checks,
        timestamp=_now(),
    )


@router.get("/health/databricks", response_model=DatabricksStatus)
async def databricks_connection_check() -> DatabricksStatus:
    """
    Check Databricks workspace connection.

    Verifies that the application can reach the workspace that hosts the
    model serving endpoint, using the configured credentials.
    """
    try:
        from databricks.sdk import WorkspaceClient

        w = WorkspaceClient()
        current_user = w.current_user.me()

        return DatabricksStatus(
            connected=True,
            workspace=w.config.host,
            user=current_user.user_name if current_user else None,
        )
    except Exception as e:
        logger.warning(f"Databricks connection check failed: {e}")
        return DatabricksStatus(
            connected=False,
            error=str(e),
        )


@router.get("/health/live")
async def liveness_check() -> dict:
    """Simple liveness probe."""
    return {"status": "alive"}
