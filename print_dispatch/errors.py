"""
Exceptions raised along the dispatch path.

Exception Hierarchy:
    PrintDispatchError (base)
    ├── ConfigError          - bad configuration (startup failure)
    ├── ClientError          - missing/malformed request (HTTP 400)
    ├── MappingNotFound      - no mapping for a document type (HTTP 404)
    ├── BackendUnavailable   - no backend configured for a target variant
    ├── BackendUnreachable   - transport failure or caller-side timeout
    ├── BackendRejected      - backend answered with a negative status
    │   └── SpoolerRejected  - OS spooler refused the job
    ├── StagingFailed        - temp file could not be written
    ├── TransientLock        - filesystem contention (bridge internal only)
    └── DispatchError        - anything unexpected raised by an adapter

Everything except ClientError and MappingNotFound is reported to HTTP callers
as a 500; the caller decides whether to resubmit.
"""

from typing import Any, Optional


class PrintDispatchError(Exception):
    """Base exception for all dispatch errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(PrintDispatchError):
    """Configuration could not be loaded or is inconsistent."""


class ClientError(PrintDispatchError):
    """The inbound request is missing data or malformed. Never retried."""


class MappingNotFound(PrintDispatchError):
    """No mapping is configured for the requested document type."""

    def __init__(self, doc_type: str):
        super().__init__(f"No mapping for {doc_type}", {"doc_type": doc_type})
        self.doc_type = doc_type


class BackendUnavailable(PrintDispatchError):
    """The resolved target needs a backend that is not configured."""


class BackendUnreachable(PrintDispatchError):
    """The backend could not be reached (connection refused, timeout)."""


class BackendRejected(PrintDispatchError):
    """The backend explicitly refused the job.

    ``token`` carries the backend's diagnostic status keyword.
    """

    def __init__(self, token: str, message: Optional[str] = None,
                 details: Optional[dict[str, Any]] = None):
        super().__init__(message or token, details)
        self.token = token


class SpoolerRejected(BackendRejected):
    """The OS print spooler refused the job (unknown printer, cupsd down)."""


class StagingFailed(PrintDispatchError):
    """The payload could not be written to a temporary file."""


class TransientLock(PrintDispatchError):
    """Slot file held by another process. Retried inside the bridge only."""


class DispatchError(PrintDispatchError):
    """An adapter raised something outside the taxonomy."""
