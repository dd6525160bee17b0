"""
FastAPI application factory.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from print_dispatch.api.dependencies import init_dependencies
from print_dispatch.api.routes import MISSING_DATA, router
from print_dispatch.backends import BackendRegistry
from print_dispatch.dispatch import DispatchRouter
from print_dispatch.mapping import MappingResolver

logger = logging.getLogger(__name__)


def create_app(
    backends: BackendRegistry,
    resolver: MappingResolver,
    config_path: Optional[str] = None,
    cors_origins: list[str] = None,
    debug: bool = False,
    dispatch_timeout_sec: Optional[float] = None
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        backends: Configured backend registry
        resolver: Document type mappings
        config_path: Config file that mapping updates are saved to
        cors_origins: List of allowed CORS origins (None = allow all)
        debug: Enable debug mode
        dispatch_timeout_sec: Caller-side timeout for one backend submission

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Print Dispatch Gateway",
        description="Routes document types to network, spooler and filesystem-bridge printers",
        version="1.0.0",
        debug=debug
    )

    # CORS configuration
    if cors_origins is None:
        # Development: allow all origins
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    dispatcher = DispatchRouter(resolver, backends, timeout_sec=dispatch_timeout_sec)
    init_dependencies(backends, dispatcher, config_path)

    @app.exception_handler(RequestValidationError)
    async def on_invalid_request(request: Request, exc: RequestValidationError):
        logger.warning(f"Malformed request to {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": MISSING_DATA})

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    # Include routes
    app.include_router(router)

    @app.on_event("startup")
    async def startup():
        logger.info("Print Dispatch Gateway starting...")
        await backends.start_all()
        for backend in backends.list_all():
            logger.info(f"  {backend.kind}: {backend.describe()}")

        mappings = resolver.list_mappings()
        if mappings:
            logger.info("Configured mappings:")
            for mapping in mappings:
                logger.info(f"  {mapping.name} -> {mapping.target.describe()}")

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("Print Dispatch Gateway shutting down...")
        await backends.stop_all()

    return app
