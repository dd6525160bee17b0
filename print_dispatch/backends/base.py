from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from datetime import datetime
import uuid

from print_dispatch.errors import PrintDispatchError
from print_dispatch.mapping import TargetDescriptor


class JobStatus(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PrintJob:
    doc_type: str
    payload: bytes
    target: TargetDescriptor
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    backend_job_id: Optional[str] = None
    error: Optional[PrintDispatchError] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class PrintResult:
    success: bool
    job_id: str
    backend_job_id: Optional[str] = None
    target: Optional[TargetDescriptor] = None

    def to_response(self) -> dict:
        return {"success": self.success, "jobId": self.backend_job_id}


class BackendBase(ABC):
    """Abstract base class for all printing backends."""

    kind: str = ""

    def __init__(self, config: dict):
        self.config = config

    async def start(self) -> None:
        """Acquire resources. Called once when the server starts."""

    async def stop(self) -> None:
        """Release resources and cancel pending timers."""

    @abstractmethod
    async def submit(self, payload: bytes, destination: str) -> Optional[str]:
        """
        Hand a payload to the backend.

        ``destination`` is the variant-specific part of the target (tray id,
        printer name or slot id). Returns the backend's job id, if it has one.
        Raises a PrintDispatchError subclass on failure.
        """

    @abstractmethod
    def describe(self) -> dict:
        """Backend-specific context for the status endpoint."""
