import logging
from typing import Optional

from print_dispatch.mapping import TargetDescriptor

from .base import BackendBase

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Registry mapping target variants to the backend that serves them."""

    def __init__(self):
        self._backends: dict[type, BackendBase] = {}

    def register(self, target_type: type, backend: BackendBase) -> None:
        """Register the backend serving one target variant."""
        self._backends[target_type] = backend

    def get(self, target: TargetDescriptor) -> Optional[BackendBase]:
        """Get the backend for a resolved target."""
        return self._backends.get(type(target))

    def get_by_type(self, target_type: type) -> Optional[BackendBase]:
        return self._backends.get(target_type)

    def list_all(self) -> list[BackendBase]:
        """List all registered backends."""
        return list(self._backends.values())

    async def start_all(self) -> None:
        for backend in self.list_all():
            await backend.start()

    async def stop_all(self) -> None:
        """Stop every backend; one failing stop does not block the others."""
        for backend in self.list_all():
            try:
                await backend.stop()
            except Exception as e:
                logger.error(f"Failed to stop {backend.kind} backend: {e}")

    def describe_all(self) -> dict[str, dict]:
        return {backend.kind: backend.describe() for backend in self.list_all()}
