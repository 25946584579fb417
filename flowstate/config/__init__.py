from .settings import Settings
from .container import Container

__all__ = ["Settings", "Container"]
