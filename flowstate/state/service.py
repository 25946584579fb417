"""
State Query Service

Public entry points for time-travel state:

    get_state(run_id, bin_index, mode)                 -> StateSnapshotResponse
    get_state_window(run_id, start_bin, end_bin, mode) -> StateWindowResponse

Each call loads a fresh StateRunContext, validates the requested bins,
runs the mode validator and builds the response. Nothing is shared
between calls beyond the configured data directory.
"""

from __future__ import annotations
import logging
from typing import Optional

from flowstate.core.exceptions import (
    InvalidRequestError,
    PayloadTooLargeError,
    UnprocessableEntityError,
)
from flowstate.timetravel.manifest_reader import RunManifestReader
from flowstate.timetravel.mode_validator import ModeValidationContext, ModeValidationResult, ModeValidator

from .builders import SnapshotBuilder, WindowBuilder
from .context import GraphQueryMode, RunContextLoader, StateRunContext
from .contracts import StateSnapshotResponse, StateWindowResponse

MAX_WINDOW_BINS = 500


class StateQueryService:
    """
    Resolves snapshot and window views of a run.

    Example:
        >>> service = StateQueryService("data/runs")
        >>> snapshot = service.get_state("run_001", 3)
        >>> snapshot.to_dict()["nodes"][0]["derived"]["color"]
        'green'
    """

    def __init__(
        self,
        data_dir: str,
        manifest_reader: Optional[RunManifestReader] = None,
        mode_validator: Optional[ModeValidator] = None,
        max_window_bins: int = MAX_WINDOW_BINS,
    ):
        self.data_dir = data_dir
        self.loader = RunContextLoader(data_dir, manifest_reader or RunManifestReader())
        self.mode_validator = mode_validator or ModeValidator()
        self.max_window_bins = max_window_bins
        self.logger = logging.getLogger(__name__)

    def get_state(self, run_id: str, bin_index: int,
                  mode: GraphQueryMode = GraphQueryMode.OPERATIONAL) -> StateSnapshotResponse:
        context = self.loader.load(run_id, mode)
        bins = context.window.bins

        if bin_index < 0 or bin_index >= bins:
            raise InvalidRequestError(f"binIndex must be between 0 and {bins - 1}.")

        validation = self._validate(context)
        response = SnapshotBuilder(context, validation).build(bin_index)

        self.logger.info(
            f"Resolved state snapshot for run {run_id} (mode={context.mode}) "
            f"at bin {bin_index} of {bins}"
        )
        return response

    def get_state_window(self, run_id: str, start_bin: int, end_bin: int,
                         mode: GraphQueryMode = GraphQueryMode.OPERATIONAL) -> StateWindowResponse:
        context = self.loader.load(run_id, mode)
        bins = context.window.bins

        if start_bin < 0 or start_bin >= bins:
            raise InvalidRequestError(f"startBin must be between 0 and {bins - 1}.")
        if end_bin < 0 or end_bin >= bins:
            raise InvalidRequestError(f"endBin must be between 0 and {bins - 1}.")
        if end_bin < start_bin:
            raise InvalidRequestError("endBin must be greater than or equal to startBin.")

        count = end_bin - start_bin + 1
        if count > self.max_window_bins:
            raise PayloadTooLargeError(
                f"Requested bin range {count} exceeds maximum supported window size of {self.max_window_bins}."
            )

        validation = self._validate(context)
        response = WindowBuilder(context, validation).build(start_bin, end_bin)

        self.logger.info(
            f"Resolved state window for run {run_id} (mode={context.mode}) from bin {start_bin} "
            f"to {end_bin} ({count} of {bins})"
        )
        return response

    def _validate(self, context: StateRunContext) -> ModeValidationResult:
        validation = self.mode_validator.validate(ModeValidationContext(
            manifest_metadata=context.manifest_metadata,
            window=context.window,
            topology=context.topology,
            node_data=context.node_data,
            initial_warnings=context.initial_warnings,
            initial_node_warnings=context.initial_node_warnings,
        ))
        if validation.has_errors:
            raise UnprocessableEntityError(
                validation.error_message or "Mode validation failed.",
                error_code=validation.error_code or "mode_validation_failed",
            )
        return validation
