"""
Dependency injection for API routes.

These are set up during app initialization.
"""

from typing import Optional

from print_dispatch.backends import BackendRegistry
from print_dispatch.dispatch import DispatchRouter

# Global instances (set during app init)
_backends: Optional[BackendRegistry] = None
_dispatcher: Optional[DispatchRouter] = None
_config_path: Optional[str] = None


def init_dependencies(
    backends: BackendRegistry,
    dispatcher: DispatchRouter,
    config_path: Optional[str] = None
):
    """Initialize global dependencies."""
    global _backends, _dispatcher, _config_path
    _backends = backends
    _dispatcher = dispatcher
    _config_path = config_path


def get_backends() -> BackendRegistry:
    """Get backend registry instance."""
    if _backends is None:
        raise RuntimeError("Backend registry not initialized")
    return _backends


def get_dispatcher() -> DispatchRouter:
    """Get dispatch router instance."""
    if _dispatcher is None:
        raise RuntimeError("Dispatcher not initialized")
    return _dispatcher


def get_config_path() -> Optional[str]:
    """Path mapping changes are saved to, if the config came from a file."""
    return _config_path
