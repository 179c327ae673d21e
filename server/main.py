"""Entry point for the peer feed API."""

import time
import uuid
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from archive.keys import load_or_create_keypair
from archive.locks import DEFAULT_LOCKS, DigestLocks
from archive.schemas import DEFAULT_REGISTRY, SchemaRegistry
from common.config import ARCHIVE_HOST, ARCHIVE_KEYPAIR_PATH, ARCHIVE_PORT, build_archive_config
from common.exceptions import (
    ArchiveError,
    IntegrityError,
    NotFoundError,
    ParseError,
    SchemaValidationError,
)
from common.logging_config import get_logger, setup_logging
from common.types import ArchiveConfig
from server.routes import feed_router, publication_router

logger = get_logger(__name__)


def _error_response(status_code: int, exc: ArchiveError, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.code, **extra}
    )


async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


async def parse_error_handler(request: Request, exc: ParseError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Parse error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


async def schema_validation_handler(request: Request, exc: SchemaValidationError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Schema validation error: {exc} errors={exc.errors} "
        f"[request_id={request_id}] path={request.url.path}"
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, exc, errors=exc.errors)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Integrity error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


async def not_found_handler(request: Request, exc: NotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Not found: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


async def archive_error_handler(request: Request, exc: ArchiveError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Archive error: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


def create_app(
    config: ArchiveConfig,
    registry: Optional[SchemaRegistry] = None,
    locks: Optional[DigestLocks] = None
) -> FastAPI:
    """
    Build the feed API application for one archive node.

    Args:
        config: Local node configuration
        registry: Schema registry (default: shipped schemas)
        locks: Per-digest locks, shared with an in-process replicator

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Publication Archive",
        description="Accession feed and publication store of an archive node",
        version="1.0.0"
    )
    app.state.config = config
    app.state.registry = registry or DEFAULT_REGISTRY
    app.state.locks = locks or DEFAULT_LOCKS

    app.middleware("http")(log_requests)

    app.add_exception_handler(ParseError, parse_error_handler)
    app.add_exception_handler(SchemaValidationError, schema_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(ArchiveError, archive_error_handler)

    app.include_router(feed_router)
    app.include_router(publication_router)

    return app


def main():
    setup_logging('server')
    logger.info("Initializing feed API...")
    config = build_archive_config(load_or_create_keypair(Path(ARCHIVE_KEYPAIR_PATH)))
    logger.info(f"Storage directory: {config.directory} [public_key={config.keypair.public.hex()}]")

    uvicorn.run(
        create_app(config),
        host=ARCHIVE_HOST,
        port=ARCHIVE_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
