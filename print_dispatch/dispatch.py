"""
Dispatch router.

Resolves a document type, hands the payload to the backend serving the
resolved target and turns the outcome into a uniform PrintResult. The router
never retries; each backend owns its retry policy.
"""

import asyncio
import logging
from typing import Optional

from print_dispatch.backends import BackendBase, BackendRegistry, JobStatus, PrintJob, PrintResult
from print_dispatch.errors import (
    BackendUnavailable,
    BackendUnreachable,
    DispatchError,
    PrintDispatchError,
)
from print_dispatch.mapping import (
    BridgeSlot,
    MappingResolver,
    NetworkTray,
    SpoolerPrinter,
    TargetDescriptor,
)

logger = logging.getLogger(__name__)


def destination_of(target: TargetDescriptor) -> str:
    """The variant-specific part of a target handed to the backend."""
    if isinstance(target, NetworkTray):
        return target.tray_id
    if isinstance(target, SpoolerPrinter):
        return target.printer_name
    if isinstance(target, BridgeSlot):
        return target.slot_id
    raise TypeError(f"Unknown target descriptor: {target!r}")


class DispatchRouter:
    """
    Routes print requests to backends.

    Args:
        resolver: Document type -> target lookup
        backends: Registry keyed by target variant
        timeout_sec: Optional caller-side timeout for one submission
    """

    def __init__(
        self,
        resolver: MappingResolver,
        backends: BackendRegistry,
        timeout_sec: Optional[float] = None
    ):
        self.resolver = resolver
        self.backends = backends
        self.timeout_sec = timeout_sec

    async def dispatch(self, doc_type: str, payload: bytes) -> PrintResult:
        """
        Print a payload for a logical document type.

        Raises:
            MappingNotFound: no mapping for doc_type
            PrintDispatchError: the backend failed
        """
        target = self.resolver.resolve(doc_type)
        return await self.dispatch_to(target, payload, doc_type=doc_type)

    async def dispatch_to(
        self,
        target: TargetDescriptor,
        payload: bytes,
        doc_type: str = ""
    ) -> PrintResult:
        """Print a payload to an already resolved target."""
        job = PrintJob(doc_type=doc_type or destination_of(target), payload=payload, target=target)

        backend = self.backends.get(target)
        if backend is None:
            error = BackendUnavailable(
                f"No backend configured for {target.describe()}",
                {"target": target.describe()}
            )
            self._fail(job, error)
            raise error

        job.status = JobStatus.SUBMITTED
        logger.info(
            f"[DISPATCH] Job {job.id}: {job.doc_type} -> {target.describe()} "
            f"({len(payload)} bytes)"
        )

        try:
            job.backend_job_id = await self._submit(backend, job)
        except PrintDispatchError as e:
            self._fail(job, e)
            raise
        except Exception as e:
            error = DispatchError(f"{backend.kind} backend error: {e}", {"target": target.describe()})
            self._fail(job, error)
            raise error from e

        job.status = JobStatus.SUCCEEDED
        logger.info(
            f"[DISPATCH] Job {job.id} printed {job.doc_type} "
            f"(backend job {job.backend_job_id})"
        )
        return PrintResult(
            success=True,
            job_id=job.id,
            backend_job_id=job.backend_job_id,
            target=target
        )

    async def _submit(self, backend: BackendBase, job: PrintJob) -> Optional[str]:
        """
        Run one backend submission, bounded by the caller-side timeout if set.

        Only an expired deadline becomes BackendUnreachable; a TimeoutError
        raised by the adapter itself propagates to dispatch_to like any
        other adapter failure.
        """
        submission = backend.submit(job.payload, destination_of(job.target))
        if not self.timeout_sec:
            return await submission

        task = asyncio.ensure_future(submission)
        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout_sec)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        # The backend may still complete the job after we stop waiting
        logger.warning(
            f"[DISPATCH] Job {job.id} timed out; backend may still print it (at-least-once)"
        )
        raise BackendUnreachable(
            f"No answer from {backend.kind} backend within {self.timeout_sec}s",
            {"target": job.target.describe()}
        )

    def _fail(self, job: PrintJob, error: PrintDispatchError) -> None:
        job.status = JobStatus.FAILED
        job.error = error
        logger.error(
            f"[DISPATCH] Job {job.id} failed at {job.created_at.isoformat()}: "
            f"{job.doc_type} -> {job.target.describe()} ({len(job.payload)} bytes): {error}"
        )
