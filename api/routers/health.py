"""
Health check and service info endpoints.
"""

from fastapi import APIRouter, Depends
from typing import Dict, Any
import logging
import os
from datetime import datetime, timezone

from api.dependencies import get_settings
from api.models import HealthResponse
from flowstate.config import Settings

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/", response_model=Dict[str, Any])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "Flow State API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "state": "/v1/runs/{runId}/state?binIndex=",
            "state_window": "/v1/runs/{runId}/state_window?startBin=&endBin=",
            "metrics": "/v1/runs/{runId}/metrics",
        },
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)):
    """Verifies the API is running and the run directory is reachable."""
    exists = os.path.isdir(settings.data_dir)
    if not exists:
        logger.warning(f"Run data directory {settings.data_dir} does not exist")
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        data_dir=settings.data_dir,
        data_dir_exists=exists,
        message=None if exists else "Run data directory not found.",
    )
