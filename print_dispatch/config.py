"""
Configuration loading, backend setup and the administrative save.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml

from print_dispatch.backends import BackendRegistry
from print_dispatch.backends.bridge import FilesystemBridgeAdapter
from print_dispatch.backends.network import NetworkPrinterAdapter
from print_dispatch.backends.spooler import SpoolerAdapter
from print_dispatch.errors import ConfigError
from print_dispatch.mapping import BridgeSlot, Mapping, MappingResolver, NetworkTray, SpoolerPrinter

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "default.yaml"
LOCAL_CONFIG = "local.yaml"


def find_config_path(config_path: Optional[str] = None) -> Optional[Path]:
    """
    Locate the configuration file.

    Looks for config in order:
    1. Explicit path if provided
    2. CONFIG_FILE environment variable
    3. ./config/local.yaml
    4. ./config/default.yaml
    """
    search_paths = []

    if config_path:
        search_paths.append(Path(config_path))

    if env_path := os.environ.get("CONFIG_FILE"):
        search_paths.append(Path(env_path))

    search_paths.extend([
        Path.cwd() / "config" / LOCAL_CONFIG,
        Path.cwd() / "config" / DEFAULT_CONFIG,
    ])

    for path in search_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML. Returns {} when no file is found."""
    path = find_config_path(config_path)
    if path is None:
        logger.warning("No config file found, using defaults")
        return {}

    logger.info(f"Loading config from {path}")
    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    config["_path"] = str(path)
    return config


def load_mappings(config: dict) -> MappingResolver:
    """
    Build the resolver from the `mappings` section.

    Config format:
        mappings:
          - name: invoice
            tray: tray-1
          - name: receipt
            printer: Brother_MFC
          - name: legacy-form
            slot: output_tray__1.pdf
    """
    resolver = MappingResolver()
    resolver.load(config.get("mappings") or [])
    return resolver


def save_mappings(config_path: str, mappings: list[Mapping], printer_ip: Optional[str] = None) -> Path:
    """
    Persist a new mapping list (administrative save).

    Only the `mappings` key (and optionally `network.printer_ip`) is
    rewritten; the rest of the file is kept. The shipped default.yaml is
    never modified: changes go to local.yaml beside it, seeded from the
    default on first save, which takes precedence on the next start.

    Returns:
        Path of the file written
    """
    source = Path(config_path)
    path = source.with_name(LOCAL_CONFIG) if source.name == DEFAULT_CONFIG else source
    if path.exists():
        source = path

    config = {}
    if source.exists():
        with open(source) as f:
            config = yaml.safe_load(f) or {}

    config["mappings"] = [mapping.to_dict() for mapping in mappings]
    if printer_ip:
        config.setdefault("network", {})["printer_ip"] = printer_ip

    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w") as f:
        yaml.safe_dump(config, f, sort_keys=False)
    os.replace(tmp_path, path)
    logger.info(f"Saved {len(mappings)} mapping(s) to {path}")
    return path


def setup_backends(config: dict) -> BackendRegistry:
    """
    Set up backends from configuration.

    Config format:
        network:
          printer_ip: 192.168.1.50

        spooler:
          enabled: true
          cups_server: localhost

        bridge:
          enabled: true
          directory: storage
          slots:
            output_tray__1.pdf: TRAY_1_STD
    """
    registry = BackendRegistry()

    network_conf = config.get("network") or {}
    if network_conf.get("printer_ip"):
        registry.register(NetworkTray, NetworkPrinterAdapter(network_conf))
        logger.info(f"Registered network printer at {network_conf['printer_ip']}")

    spooler_conf = config.get("spooler") or {}
    if spooler_conf.get("enabled", False):
        registry.register(SpoolerPrinter, SpoolerAdapter(spooler_conf))
        logger.info(f"Registered OS spooler ({spooler_conf.get('cups_server', 'localhost')})")

    bridge_conf = config.get("bridge") or {}
    if bridge_conf.get("enabled", False):
        registry.register(BridgeSlot, FilesystemBridgeAdapter(bridge_conf))
        logger.info(f"Registered filesystem bridge on {bridge_conf.get('directory', 'storage')}")

    return registry


def get_server_config(config: dict) -> dict:
    """Extract server configuration."""
    server = config.get("server") or {}
    return {
        "host": server.get("host", "0.0.0.0"),
        "port": server.get("port", 4000),
        "debug": server.get("debug", False),
        "cors_origins": server.get("cors_origins", None),
        "log_file": server.get("log_file", None),
        "dispatch_timeout_sec": server.get("dispatch_timeout_sec", None),
    }
