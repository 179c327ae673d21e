"""FastAPI dependencies resolving per-application state."""

from fastapi import Request

from archive.locks import DigestLocks
from archive.schemas import SchemaRegistry
from common.types import ArchiveConfig


def get_archive_config(request: Request) -> ArchiveConfig:
    """Node configuration the application was created with."""
    return request.app.state.config


def get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.registry


def get_digest_locks(request: Request) -> DigestLocks:
    return request.app.state.locks
