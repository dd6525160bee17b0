"""
OS spooler adapter for document printing.

Requires: pycups package
Works with any CUPS-configured printer (network or local).

Completion contract: fire-and-forget. CUPS needs a file path, so the payload
is staged to a temporary file which is deleted after a grace period, giving
the spooler time to read it.
"""

import asyncio
import logging
import os
import tempfile
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from print_dispatch.errors import SpoolerRejected, StagingFailed

from .base import BackendBase

logger = logging.getLogger(__name__)

try:
    import cups
    CUPS_AVAILABLE = True
except ImportError:
    CUPS_AVAILABLE = False
    logger.warning("pycups package not available - SpoolerAdapter will not function")


class SpoolerAdapter(BackendBase):
    """
    Adapter for printers managed by the local CUPS spooler.

    Config options:
        cups_server: CUPS server address (default: localhost)
        temp_dir: Where payloads are staged (default: system temp dir)
        cleanup_delay_sec: Grace period before a staged file is deleted (default: 2.0)
        job_title: Title passed to CUPS (default: API-Print)
    """

    kind = "spooler"

    def __init__(self, config: dict, connection_factory: Optional[Callable[[], object]] = None):
        super().__init__(config)
        self.cups_server = config.get("cups_server", "localhost")
        self.temp_dir = Path(config.get("temp_dir") or tempfile.gettempdir())
        self.cleanup_delay_sec = float(config.get("cleanup_delay_sec", 2.0))
        self.job_title = config.get("job_title", "API-Print")

        self._connection_factory = connection_factory
        self._conn = None
        self._conn_lock = threading.Lock()
        self._cleanup_handles: dict[Path, asyncio.TimerHandle] = {}

    def _get_connection(self):
        """Get or create CUPS connection."""
        if self._conn is None:
            if self._connection_factory is not None:
                self._conn = self._connection_factory()
            elif CUPS_AVAILABLE:
                if self.cups_server != "localhost":
                    cups.setServer(self.cups_server)
                self._conn = cups.Connection()
            else:
                raise SpoolerRejected("missing-dependency", "pycups package not installed")
        return self._conn

    def _call(self, method: str, *args):
        """
        Run one CUPS call on the shared connection.

        Runs in a worker thread. pycups connections are not thread-safe, so
        calls are serialized.
        """
        with self._conn_lock:
            conn = self._get_connection()
            return getattr(conn, method)(*args)

    def describe(self) -> dict:
        return {
            "cups_server": self.cups_server,
            "pending_cleanups": len(self._cleanup_handles),
        }

    async def list_printers(self) -> list[str]:
        """Names of the printers installed in CUPS."""
        try:
            printers = await asyncio.to_thread(self._call, "getPrinters")
        except SpoolerRejected:
            raise
        except Exception as e:
            raise SpoolerRejected("spooler-unavailable", f"CUPS query failed: {e}") from e
        return list(printers)

    def _staging_path(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        return self.temp_dir / f"print_{stamp}_{uuid.uuid4().hex[:8]}.pdf"

    async def submit(self, payload: bytes, destination: str) -> Optional[str]:
        temp_path = self._staging_path()

        try:
            try:
                temp_path.write_bytes(payload)
            except OSError as e:
                logger.error(f"[SPOOLER] Could not stage {len(payload)} bytes at {temp_path}: {e}")
                raise StagingFailed(f"Could not stage print file: {e}", {"path": str(temp_path)}) from e

            try:
                cups_job_id = await asyncio.to_thread(
                    self._call, "printFile", destination, str(temp_path), self.job_title, {}
                )
            except SpoolerRejected:
                raise
            except Exception as e:
                logger.error(f"[SPOOLER] CUPS refused job for {destination}: {e}")
                raise SpoolerRejected(
                    "spooler-rejected", f"Spooler rejected job: {e}", {"printer": destination}
                ) from e

            logger.info(f"[SPOOLER] Submitted {temp_path.name} to {destination} as CUPS job {cups_job_id}")
            return str(cups_job_id)

        finally:
            self._schedule_cleanup(temp_path)

    def _schedule_cleanup(self, path: Path) -> None:
        loop = asyncio.get_running_loop()
        previous = self._cleanup_handles.pop(path, None)
        if previous is not None:
            previous.cancel()
        self._cleanup_handles[path] = loop.call_later(self.cleanup_delay_sec, self._cleanup, path)

    def _cleanup(self, path: Path) -> None:
        """Best-effort delete of a staged file. Failures are logged, never raised."""
        self._cleanup_handles.pop(path, None)
        try:
            os.remove(path)
            logger.debug(f"[SPOOLER] Removed staged file {path.name}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[SPOOLER] Leaked staged file {path}: {e}")

    async def stop(self) -> None:
        """Cancel pending cleanup timers and delete their files now."""
        for path, handle in list(self._cleanup_handles.items()):
            handle.cancel()
            self._cleanup(path)
        self._cleanup_handles.clear()
