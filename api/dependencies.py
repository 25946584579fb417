"""
FastAPI dependency injection for API routes.

Provides:
  - ``get_settings``: environment settings, loaded once per process
  - ``get_container``: the service container built from those settings
  - ``get_state_service`` / ``get_metrics_service``: query services for routes
"""

from functools import lru_cache

from fastapi import Depends

from flowstate.config import Container, Settings
from flowstate.metrics import MetricsService
from flowstate.state import StateQueryService


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache()
def get_container() -> Container:
    return Container.from_settings(get_settings())


def get_state_service(container: Container = Depends(get_container)) -> StateQueryService:
    """
    Usage in an endpoint::

        @router.get("/example")
        async def example(service: StateQueryService = Depends(get_state_service)):
            return service.get_state("run_001", 0).to_dict()
    """
    return container.state_service()


def get_metrics_service(container: Container = Depends(get_container)) -> MetricsService:
    return container.metrics_service()
