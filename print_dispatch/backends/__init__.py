from .base import BackendBase, JobStatus, PrintJob, PrintResult
from .registry import BackendRegistry

__all__ = ["BackendBase", "JobStatus", "PrintJob", "PrintResult", "BackendRegistry"]
