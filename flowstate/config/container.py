"""
Dependency Injection Container

Wires readers, validators and query services from Settings.
"""

from dataclasses import dataclass, field
from typing import Optional

from .settings import Settings

from flowstate.metrics.service import MetricsService
from flowstate.state.service import StateQueryService
from flowstate.timetravel.manifest_reader import RunManifestReader
from flowstate.timetravel.mode_validator import ModeValidator


@dataclass
class Container:
    """
    Dependency injection container.

    Readers and validators are stateless and shared; the query services
    are cached singletons bound to one data directory.
    """
    data_dir: str = "data/runs"
    max_window_bins: int = 500
    metrics_default_window_bins: int = 12

    _manifest_reader: Optional[RunManifestReader] = field(default=None, repr=False)
    _mode_validator: Optional[ModeValidator] = field(default=None, repr=False)
    _state_service: Optional[StateQueryService] = field(default=None, repr=False)
    _metrics_service: Optional[MetricsService] = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Container":
        """Create container from settings."""
        return cls(
            data_dir=settings.data_dir,
            max_window_bins=settings.max_window_bins,
            metrics_default_window_bins=settings.metrics_default_window_bins,
        )

    def manifest_reader(self) -> RunManifestReader:
        if not self._manifest_reader:
            self._manifest_reader = RunManifestReader()
        return self._manifest_reader

    def mode_validator(self) -> ModeValidator:
        if not self._mode_validator:
            self._mode_validator = ModeValidator()
        return self._mode_validator

    def state_service(self) -> StateQueryService:
        """Get the state query service singleton."""
        if not self._state_service:
            self._state_service = StateQueryService(
                self.data_dir,
                manifest_reader=self.manifest_reader(),
                mode_validator=self.mode_validator(),
                max_window_bins=self.max_window_bins,
            )
        return self._state_service

    def metrics_service(self) -> MetricsService:
        """Get the metrics service singleton."""
        if not self._metrics_service:
            self._metrics_service = MetricsService(
                self.data_dir,
                state_service=self.state_service(),
                manifest_reader=self.manifest_reader(),
                default_window_bins=self.metrics_default_window_bins,
            )
        return self._metrics_service
