"""
Time-travel state endpoints: single-bin snapshot and bin-range window.
"""

from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, Optional
import logging

from api.dependencies import get_state_service
from api.models import ERROR_RESPONSES
from flowstate.state import GraphQueryMode, StateQueryService

router = APIRouter(prefix="/v1/runs", tags=["state"])
logger = logging.getLogger(__name__)


@router.get("/{run_id}/state", response_model=Dict[str, Any], responses=ERROR_RESPONSES)
async def get_state(
    run_id: str,
    bin_index: int = Query(..., alias="binIndex", description="Bin to resolve"),
    mode: Optional[str] = Query(None, description="operational (default) or full"),
    service: StateQueryService = Depends(get_state_service),
):
    """Snapshot of every topology node at one bin."""
    query_mode = GraphQueryMode.parse(mode)
    logger.info(f"State snapshot requested for run {run_id} at bin {bin_index} ({query_mode.value})")
    return service.get_state(run_id, bin_index, query_mode).to_dict()


@router.get("/{run_id}/state_window", response_model=Dict[str, Any], responses=ERROR_RESPONSES)
async def get_state_window(
    run_id: str,
    start_bin: int = Query(..., alias="startBin", description="First bin (inclusive)"),
    end_bin: int = Query(..., alias="endBin", description="Last bin (inclusive)"),
    mode: Optional[str] = Query(None, description="operational (default) or full"),
    service: StateQueryService = Depends(get_state_service),
):
    """Node and edge series over ``[startBin, endBin]``."""
    query_mode = GraphQueryMode.parse(mode)
    logger.info(f"State window requested for run {run_id} bins {start_bin}..{end_bin} ({query_mode.value})")
    return service.get_state_window(run_id, start_bin, end_bin, query_mode).to_dict()
