"""
API routes for the print dispatch gateway.

Error bodies are always {"error": "<message>"}.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from print_dispatch.api.dependencies import get_backends, get_config_path, get_dispatcher
from print_dispatch.backends.network import NetworkPrinterAdapter
from print_dispatch.backends.spooler import SpoolerAdapter
from print_dispatch.config import save_mappings
from print_dispatch.errors import ClientError, ConfigError, MappingNotFound, PrintDispatchError
from print_dispatch.mapping import NetworkTray, SpoolerPrinter, parse_mapping
from print_dispatch.validation import decode_payload

logger = logging.getLogger(__name__)

router = APIRouter()

MISSING_DATA = "Missing Data"

# Track server start time
_server_start_time = datetime.now()


class PrintRequest(BaseModel):
    docType: Optional[str] = None
    printerName: Optional[str] = None
    base64: Optional[str] = None


class MappingUpdate(BaseModel):
    mappings: list[dict]
    printerIp: Optional[str] = None


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("/health")
async def health_check():
    """Liveness only."""
    return {"status": "ok"}


@router.get("/status")
async def get_status():
    """Service status plus backend-specific context."""
    backends = get_backends()
    dispatcher = get_dispatcher()
    network = backends.get_by_type(NetworkTray)

    return {
        "status": "online",
        "printer": network.printer_ip if isinstance(network, NetworkPrinterAdapter) else None,
        "uptime_seconds": int((datetime.now() - _server_start_time).total_seconds()),
        "mappings": len(dispatcher.resolver),
        "backends": backends.describe_all(),
    }


@router.post("/print")
async def print_document(body: PrintRequest):
    """
    Print a base64 document.

    Body is either {"docType", "base64"} (routed through the mappings) or
    {"printerName", "base64"} (sent straight to that OS spooler printer).

    Examples:
        POST /print {"docType": "invoice", "base64": "JVBERi0..."}
        POST /print {"printerName": "Brother_MFC", "base64": "JVBERi0..."}
    """
    dispatcher = get_dispatcher()

    if not body.base64 or not (body.docType or body.printerName):
        return error_response(400, MISSING_DATA)

    try:
        payload = decode_payload(body.base64)
        if body.docType:
            result = await dispatcher.dispatch(body.docType, payload)
        else:
            result = await dispatcher.dispatch_to(
                SpoolerPrinter(body.printerName), payload, doc_type=body.printerName
            )
    except ClientError as e:
        logger.warning(f"Rejected print request: {e}")
        return error_response(400, str(e))
    except MappingNotFound as e:
        logger.warning(f"No mapping for: {e.doc_type}")
        return error_response(404, str(e))
    except PrintDispatchError as e:
        return error_response(500, str(e))

    return result.to_response()


@router.get("/trays")
async def scan_trays():
    """Ask the network printer which trays it offers."""
    network = get_backends().get_by_type(NetworkTray)
    if not isinstance(network, NetworkPrinterAdapter):
        return {"success": False, "error": "No network printer configured"}

    try:
        trays = await network.list_media_sources()
    except PrintDispatchError as e:
        logger.warning(f"Tray scan failed: {e}")
        return {"success": False, "error": str(e)}
    return {"success": True, "trays": trays}


@router.get("/printers")
async def list_printers():
    """List printers installed in the OS spooler."""
    spooler = get_backends().get_by_type(SpoolerPrinter)
    if not isinstance(spooler, SpoolerAdapter):
        return {"success": False, "error": "OS spooler not enabled"}

    try:
        printers = await spooler.list_printers()
    except PrintDispatchError as e:
        logger.warning(f"Printer listing failed: {e}")
        return {"success": False, "error": str(e)}
    return {"success": True, "printers": printers}


@router.get("/mappings")
async def list_mappings(request: Request):
    """Current mappings, for the admin UI."""
    dispatcher = get_dispatcher()
    network = get_backends().get_by_type(NetworkTray)
    return {
        "mappings": [mapping.to_dict() for mapping in dispatcher.resolver.list_mappings()],
        "printerIp": network.printer_ip if isinstance(network, NetworkPrinterAdapter) else None,
        "apiUrl": str(request.url_for("print_document")),
    }


@router.put("/mappings")
async def update_mappings(body: MappingUpdate):
    """
    Replace the mapping set (administrative save).

    The new set takes effect for the next request and is written back to the
    config file when the server was started from one.
    """
    dispatcher = get_dispatcher()
    network = get_backends().get_by_type(NetworkTray)

    # Nothing is applied or saved unless the whole request is valid
    if body.printerIp and not isinstance(network, NetworkPrinterAdapter):
        return error_response(400, "No network printer configured")

    try:
        mappings = [parse_mapping(entry) for entry in body.mappings]
        dispatcher.resolver.replace(mappings)
    except ConfigError as e:
        return error_response(400, str(e))

    if body.printerIp:
        network.printer_ip = body.printerIp

    config_path = get_config_path()
    if config_path:
        try:
            saved_to = await asyncio.to_thread(
                save_mappings, config_path, mappings, printer_ip=body.printerIp
            )
        except OSError as e:
            logger.error(f"Could not save mappings to {config_path}: {e}")
            return error_response(500, f"Mappings applied but not saved: {e}")
        logger.info(f"Mappings saved to {saved_to}")

    logger.info(f"Mappings updated ({len(mappings)} entries)")
    return {
        "success": True,
        "mappings": len(mappings),
        "printerIp": network.printer_ip if isinstance(network, NetworkPrinterAdapter) else None,
    }
