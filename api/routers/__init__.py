from . import health, metrics, state

__all__ = ["health", "metrics", "state"]
