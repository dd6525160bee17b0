"""Shared test doubles: a simulated IPP printer and a fake CUPS connection."""

import base64
import os
import threading
import time

import httpx
import pytest

from print_dispatch.backends import ipp

# Minimal valid PDF (complete structure)
PDF_DATA = b"""%PDF-1.4
1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj
2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj
3 0 obj<</Type/Page/MediaBox[0 0 612 792]/Parent 2 0 R>>endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000052 00000 n
0000000101 00000 n
trailer<</Size 4/Root 1 0 R>>
startxref
168
%%EOF"""

PDF_BASE64 = base64.b64encode(PDF_DATA).decode("ascii")


class FakeIppPrinter:
    """Answers IPP requests like a network printer would."""

    def __init__(self, status: str = "successful-ok", job_id: int = 42,
                 trays: tuple = ("tray-1", "tray-2", "manual")):
        self.status = status
        self.job_id = job_id
        self.trays = trays
        self.requests: list[ipp.IppMessage] = []
        self.error: Exception = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.error is not None:
            raise self.error

        message = ipp.decode_message(request.content)
        self.requests.append(message)

        operation = (
            ipp.IppGroup(ipp.TAG_OPERATION_ATTRIBUTES)
            .add(ipp.VT_CHARSET, "attributes-charset", "utf-8")
            .add(ipp.VT_NATURAL_LANGUAGE, "attributes-natural-language", "en")
        )
        groups = [operation]
        if message.code == ipp.OP_GET_PRINTER_ATTRIBUTES:
            groups.append(
                ipp.IppGroup(ipp.TAG_PRINTER_ATTRIBUTES)
                .add(ipp.VT_KEYWORD, "media-source-supported", *self.trays)
            )
        elif ipp.is_success(self.status):
            groups.append(
                ipp.IppGroup(ipp.TAG_JOB_ATTRIBUTES)
                .add(ipp.VT_INTEGER, "job-id", self.job_id)
            )

        response = ipp.IppMessage(
            code=ipp.STATUS_CODES[self.status],
            request_id=message.request_id,
            groups=groups,
        )
        return httpx.Response(
            200,
            content=ipp.encode_message(response),
            headers={"Content-Type": "application/ipp"},
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_request(self) -> ipp.IppMessage:
        return self.requests[-1]


class FakeCupsConnection:
    """Stands in for cups.Connection."""

    def __init__(self, printers: tuple = ("Office_Laser", "Brother_MFC"), call_delay: float = 0.0):
        self.printers = printers
        self.call_delay = call_delay
        self.calls = []
        self.staged_files_seen = []
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def _enter(self) -> None:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.call_delay:
            time.sleep(self.call_delay)

    def _leave(self) -> None:
        with self._guard:
            self.active -= 1

    def getPrinters(self) -> dict:
        self._enter()
        try:
            return {name: {"printer-state": 3} for name in self.printers}
        finally:
            self._leave()

    def printFile(self, printer: str, filename: str, title: str, options: dict) -> int:
        self._enter()
        try:
            self.calls.append((printer, filename, title, options))
            self.staged_files_seen.append(os.path.exists(filename))
            if printer not in self.printers:
                raise RuntimeError("client-error-not-found")
            return 17
        finally:
            self._leave()


@pytest.fixture
def fake_printer():
    return FakeIppPrinter()


@pytest.fixture
def fake_cups():
    return FakeCupsConnection()
