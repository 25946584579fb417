"""
Application Settings

Environment configuration for the state engine.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Application settings from environment."""

    # Root holding one directory per run id
    data_dir: str = "data/runs"
    log_level: str = "INFO"

    # Query limits
    max_window_bins: int = 500
    metrics_default_window_bins: int = 12

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            data_dir=os.getenv("FLOWSTATE_DATA_DIR", "data/runs"),
            log_level=os.getenv("FLOWSTATE_LOG_LEVEL", "INFO").upper(),
            max_window_bins=int(os.getenv("FLOWSTATE_MAX_WINDOW_BINS", "500")),
            metrics_default_window_bins=int(os.getenv("FLOWSTATE_METRICS_WINDOW_BINS", "12")),
        )
