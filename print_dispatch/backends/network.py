"""
Network printer adapter (IPP over HTTP).

Requires: httpx
Works with any IPP Everywhere / driverless network printer.

Completion contract: synchronous. The printer answers every Print-Job with a
status keyword; only "successful-ok" counts as success. There is no cancel
primitive, so a request that times out on our side may still print.
"""

import itertools
import logging
from typing import Optional

import httpx

from print_dispatch.errors import BackendRejected, BackendUnreachable
from print_dispatch.mapping import AUTO_TRAY
from print_dispatch.validation import sniff_content_type

from . import ipp
from .base import BackendBase

logger = logging.getLogger(__name__)

IPP_CONTENT_TYPE = "application/ipp"


class NetworkPrinterAdapter(BackendBase):
    """
    Adapter for an IPP network printer.

    Config options:
        printer_ip: Printer address (e.g. 192.168.1.50)
        port: IPP port (default: 631)
        path: IPP resource path (default: /ipp/print)
        timeout_sec: HTTP timeout per request (default: 30)
        requesting_user_name: Reported requester (default: print-dispatch)
        job_name: Job name shown on the printer (default: API-Print)
    """

    kind = "network"

    def __init__(self, config: dict, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self.printer_ip = config.get("printer_ip", "")
        self.port = int(config.get("port", 631))
        self.path = "/" + str(config.get("path", "/ipp/print")).lstrip("/")
        self.timeout_sec = float(config.get("timeout_sec", 30.0))
        self.requesting_user_name = config.get("requesting_user_name", "print-dispatch")
        self.job_name = config.get("job_name", "API-Print")

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_ids = itertools.count(1)

    @property
    def url(self) -> str:
        return f"http://{self.printer_ip}:{self.port}{self.path}"

    @property
    def printer_uri(self) -> str:
        return f"ipp://{self.printer_ip}:{self.port}{self.path}"

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_sec,
                transport=self._transport,
            )
        return self._client

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def describe(self) -> dict:
        return {"printer": self.printer_ip, "url": self.url}

    def build_print_job(self, payload: bytes, tray_id: str) -> ipp.IppMessage:
        """
        Build a Print-Job request.

        With tray "auto" the job group is left out entirely so the printer
        picks the tray; otherwise it carries exactly one media attribute.
        """
        operation = ipp.operation_group(self.printer_uri)
        operation.add(ipp.VT_NAME_WITHOUT_LANGUAGE, "requesting-user-name", self.requesting_user_name)
        operation.add(ipp.VT_NAME_WITHOUT_LANGUAGE, "job-name", self.job_name)
        operation.add(ipp.VT_MIME_MEDIA_TYPE, "document-format", sniff_content_type(payload))

        groups = [operation]
        if tray_id and tray_id != AUTO_TRAY:
            groups.append(
                ipp.IppGroup(ipp.TAG_JOB_ATTRIBUTES).add(ipp.VT_KEYWORD, "media", tray_id)
            )

        return ipp.IppMessage(
            code=ipp.OP_PRINT_JOB,
            request_id=next(self._request_ids),
            groups=groups,
            data=payload,
        )

    async def _execute(self, request: ipp.IppMessage) -> ipp.IppMessage:
        """Send one IPP request and decode the answer."""
        try:
            response = await self._get_client().post(
                self.url,
                content=ipp.encode_message(request),
                headers={"Content-Type": IPP_CONTENT_TYPE},
            )
        except httpx.TimeoutException as e:
            raise BackendUnreachable(
                f"Printer {self.printer_ip} timed out", {"url": self.url}
            ) from e
        except httpx.TransportError as e:
            raise BackendUnreachable(
                f"Printer {self.printer_ip} unreachable: {e}", {"url": self.url}
            ) from e

        if response.status_code >= 300:
            raise BackendRejected(
                f"http-{response.status_code}",
                f"Printer answered HTTP {response.status_code}",
            )

        try:
            return ipp.decode_message(response.content)
        except ipp.IppDecodeError as e:
            raise BackendRejected("malformed-response", f"Malformed IPP response: {e}") from e

    async def list_media_sources(self) -> list[str]:
        """Ask the printer which input trays / media sources it offers."""
        operation = ipp.operation_group(self.printer_uri)
        operation.add(ipp.VT_KEYWORD, "requested-attributes", "media-source-supported")
        request = ipp.IppMessage(
            code=ipp.OP_GET_PRINTER_ATTRIBUTES,
            request_id=next(self._request_ids),
            groups=[operation],
        )

        response = await self._execute(request)
        if not ipp.is_success(response.status):
            raise BackendRejected(response.status)

        attribute = response.find(ipp.TAG_PRINTER_ATTRIBUTES, "media-source-supported")
        if attribute is None:
            return []

        # A single tray arrives as a one-value attribute, several as additional values
        trays: list[str] = []
        for value in attribute.values:
            tray = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)
            if tray not in trays:
                trays.append(tray)
        return trays

    async def submit(self, payload: bytes, destination: str) -> Optional[str]:
        request = self.build_print_job(payload, destination)

        logger.info(
            f"[IPP] Sending job to {self.url} using tray: {destination or AUTO_TRAY} "
            f"({len(payload)} bytes)"
        )

        response = await self._execute(request)
        if not ipp.is_success(response.status):
            logger.warning(f"[IPP] Printer rejected job: {response.status}")
            raise BackendRejected(response.status, details={"url": self.url, "tray": destination})

        job_id = response.find(ipp.TAG_JOB_ATTRIBUTES, "job-id")
        backend_job_id = str(job_id.value) if job_id is not None else None
        logger.info(f"[IPP] Printer accepted job {backend_job_id}")
        return backend_job_id
