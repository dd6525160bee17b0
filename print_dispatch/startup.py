"""
Startup checks and validation.

Run before starting the server to catch configuration issues early.
"""

import logging
import socket
import sys
from typing import Optional

from print_dispatch.errors import ConfigError
from print_dispatch.mapping import TARGET_KEYS, BridgeSlot, NetworkTray, SpoolerPrinter, parse_mapping

logger = logging.getLogger(__name__)


def check_port_available(host: str, port: int) -> tuple[bool, Optional[str]]:
    """
    Check if a port is available for binding.

    Returns:
        (True, None) if available
        (False, error_message) if not
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        return True, None
    except socket.error as e:
        if e.errno == 10048 or e.errno == 98:  # Windows / Linux "address in use"
            return False, f"Port {port} is already in use. Another service may be running on this port."
        elif e.errno == 10049 or e.errno == 99:  # Can't assign address
            return False, f"Cannot bind to {host}:{port}. Check if the host address is valid."
        elif e.errno == 10013 or e.errno == 13:  # Permission denied
            return False, f"Permission denied for port {port}. Ports below 1024 require admin/root privileges."
        else:
            return False, f"Cannot bind to {host}:{port}: {e}"
    finally:
        sock.close()


def validate_config(config: dict) -> tuple[list[str], list[str]]:
    """
    Validate configuration.

    Returns:
        (errors, warnings) - both empty if all good
    """
    errors = []
    warnings = []

    server = config.get("server") or {}
    port = server.get("port", 4000)

    if not isinstance(port, int) or port < 1 or port > 65535:
        errors.append(f"Invalid port: {port}. Must be between 1 and 65535.")
    elif port < 1024:
        warnings.append(f"Port {port} is a privileged port. Consider using a port >= 1024.")

    network = config.get("network") or {}
    spooler = config.get("spooler") or {}
    bridge = config.get("bridge") or {}

    enabled = {
        NetworkTray: bool(network.get("printer_ip")),
        SpoolerPrinter: bool(spooler.get("enabled", False)),
        BridgeSlot: bool(bridge.get("enabled", False)),
    }
    if not any(enabled.values()):
        warnings.append("No backend configured. Every print request will fail.")

    slots = bridge.get("slots") or {}
    names = set()
    for i, entry in enumerate(config.get("mappings") or []):
        try:
            mapping = parse_mapping(entry)
        except ConfigError as e:
            errors.append(f"Mapping at index {i}: {e} (keys: {', '.join(TARGET_KEYS)})")
            continue

        if mapping.name in names:
            errors.append(f"Duplicate mapping name: '{mapping.name}'")
        names.add(mapping.name)

        if not enabled[type(mapping.target)]:
            warnings.append(
                f"Mapping '{mapping.name}' targets a disabled backend ({mapping.target.describe()})."
            )
        elif isinstance(mapping.target, BridgeSlot) and slots and mapping.target.slot_id not in slots:
            warnings.append(f"Mapping '{mapping.name}' routes to unknown slot '{mapping.target.slot_id}'.")

    if not names:
        warnings.append("No mappings configured. Only printerName requests can succeed.")

    return errors, warnings


def check_dependencies() -> dict[str, bool]:
    """
    Check which optional dependencies are available.

    Returns:
        Dict of dependency name -> is_available
    """
    deps = {}

    # pycups for the OS spooler backend
    try:
        import cups  # noqa: F401
        deps["pycups"] = True
    except ImportError:
        deps["pycups"] = False

    return deps


def run_startup_checks(config: dict) -> None:
    """
    Run all startup checks. Exits with error if critical issues found.

    Args:
        config: Loaded configuration dict
    """
    logger.info("Running startup checks...")

    server = config.get("server") or {}
    host = server.get("host", "0.0.0.0")
    port = server.get("port", 4000)

    errors, warnings = validate_config(config)

    if not errors:
        available, port_error = check_port_available(host, port)
        if not available:
            errors.append(port_error)

    deps = check_dependencies()
    if (config.get("spooler") or {}).get("enabled") and not deps["pycups"]:
        warnings.append("Spooler enabled but pycups is not installed.")

    for warning in warnings:
        logger.warning(f"  ⚠ {warning}")

    if errors:
        logger.error("Startup checks failed:")
        for error in errors:
            logger.error(f"  ✗ {error}")
        logger.error("")
        logger.error("Fix these issues and try again.")
        sys.exit(1)

    if warnings:
        logger.info(f"Startup checks passed with {len(warnings)} warning(s)")
    else:
        logger.info("Startup checks passed ✓")


def print_startup_banner(config: dict, backends: list, mappings: list) -> None:
    """Print a startup banner with useful info."""
    server = config.get("server") or {}
    port = server.get("port", 4000)

    # Get local IP for convenience
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        local_ip = s.getsockname()[0]
        s.close()
    except OSError:
        local_ip = "unknown"

    print("")
    print("=" * 50)
    print("  Print Dispatch Gateway")
    print("=" * 50)
    print("")
    print(f"  Local URL:    http://localhost:{port}")
    print(f"  Network URL:  http://{local_ip}:{port}/print")
    print("")
    print("  Backends:")
    for backend in backends:
        print(f"    • {backend.kind}")
    print("")
    print("  Mappings:")
    for mapping in mappings:
        print(f"    • {mapping.name} -> {mapping.target.describe()}")
    print("")
    print("  Endpoints:")
    print("    POST /print       - Print {docType|printerName, base64}")
    print("    GET  /status      - Service status")
    print("    GET  /health      - Liveness")
    print("    GET  /trays       - Scan network printer trays")
    print("    GET  /printers    - List OS spooler printers")
    print("    GET|PUT /mappings - View / replace mappings")
    print("")
    print("=" * 50)
    print("")
