from .base import IsolatedProcess, IsolationProvider
from .docker import DockerProvider
from .local import LocalProvider

__all__ = ["IsolatedProcess", "IsolationProvider", "DockerProvider", "LocalProvider"]
