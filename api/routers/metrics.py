"""
Service-level SLA metrics endpoint.
"""

from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, Optional
import logging

from api.dependencies import get_metrics_service
from api.models import ERROR_RESPONSES
from flowstate.metrics import MetricsService

router = APIRouter(prefix="/v1/runs", tags=["metrics"])
logger = logging.getLogger(__name__)


@router.get("/{run_id}/metrics", response_model=Dict[str, Any], responses=ERROR_RESPONSES)
async def get_metrics(
    run_id: str,
    start_bin: Optional[int] = Query(None, alias="startBin"),
    end_bin: Optional[int] = Query(None, alias="endBin"),
    service: MetricsService = Depends(get_metrics_service),
):
    """
    SLA percentage and ratio trend per service.

    Without a range the last 12 bins are used.
    """
    logger.info(f"Metrics requested for run {run_id} (startBin={start_bin}, endBin={end_bin})")
    return service.get_metrics(run_id, start_bin, end_bin).to_dict()
