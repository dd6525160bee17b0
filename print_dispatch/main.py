"""
Print Dispatch Gateway entry point.
"""

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn

from print_dispatch.api.server import create_app
from print_dispatch.config import get_server_config, load_config, load_mappings, setup_backends
from print_dispatch.errors import ConfigError
from print_dispatch.startup import print_startup_banner, run_startup_checks

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger(__name__)


def add_file_logging(log_file: str) -> None:
    """Mirror all log output to a rotating file."""
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    logger.info(f"Logging to {path}")


def main():
    parser = argparse.ArgumentParser(description="Print Dispatch Gateway")
    parser.add_argument(
        "-c", "--config",
        help="Path to config file (default: config/default.yaml)"
    )
    parser.add_argument(
        "--host",
        help="Override host from config"
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Override port from config"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )
    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="Skip startup checks (not recommended)"
    )
    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    # Apply CLI overrides before validation
    if args.host:
        config.setdefault("server", {})["host"] = args.host
    if args.port:
        config.setdefault("server", {})["port"] = args.port
    if args.debug:
        config.setdefault("server", {})["debug"] = True

    server_config = get_server_config(config)
    if server_config["log_file"]:
        add_file_logging(server_config["log_file"])
    if server_config["debug"]:
        logging.getLogger().setLevel(logging.DEBUG)

    # Run startup checks
    if not args.skip_checks:
        run_startup_checks(config)

    try:
        resolver = load_mappings(config)
    except ConfigError as e:
        logger.error(f"Invalid mappings: {e}")
        sys.exit(1)

    backends = setup_backends(config)

    app = create_app(
        backends=backends,
        resolver=resolver,
        config_path=config.get("_path"),
        cors_origins=server_config.get("cors_origins"),
        debug=server_config.get("debug", False),
        dispatch_timeout_sec=server_config.get("dispatch_timeout_sec")
    )

    print_startup_banner(config, backends.list_all(), resolver.list_mappings())

    # Run server
    try:
        uvicorn.run(
            app,
            host=server_config["host"],
            port=server_config["port"],
            log_level="debug" if server_config.get("debug") else "info"
        )
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
