"""Publication API routes: records, timestamps, attachments and publishing."""

import asyncio
import base64
import binascii

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import FileResponse

from archive import storage
from archive.locks import DigestLocks
from archive.publish import Attachment, publish
from archive.schemas import SchemaRegistry
from common.constants import DEFAULT_ATTACHMENT_CONTENT_TYPE
from common.exceptions import NotFoundError, ParseError
from common.types import ArchiveConfig
from server.dependencies import get_archive_config, get_digest_locks, get_schema_registry
from server.schemas.common import ErrorResponse
from server.schemas.publications import PublishRequest, PublishResponse, TimestampListResponse

router = APIRouter(
    prefix="/publications",
    tags=["Publications"],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    }
)


@router.post("", response_model=PublishResponse, status_code=status.HTTP_201_CREATED)
async def publish_record(
    request: PublishRequest,
    response: Response,
    config: ArchiveConfig = Depends(get_archive_config),
    registry: SchemaRegistry = Depends(get_schema_registry),
    locks: DigestLocks = Depends(get_digest_locks)
):
    """
    Publish a record originated on this node.

    Parameters:
        - record: Publication record; `version` defaults to the latest schema
        - attachments: Optional list of {data (base64), content_type}

    Returns:
        - digest: Content address of the stored record
        - location: Path the record is served from

    Raises:
        - 400: Schema validation failed or attachment data is not base64
    """
    attachments = []
    for upload in request.attachments:
        try:
            data = base64.b64decode(upload.data, validate=True)
        except binascii.Error as e:
            raise ParseError(f"Attachment data is not valid base64: {e}") from e
        attachments.append(Attachment(data=data, content_type=upload.content_type))

    digest = await publish(
        config,
        request.record,
        attachments=attachments,
        registry=registry,
        locks=locks
    )

    location = f"/publications/{digest}"
    response.headers["Location"] = location
    return PublishResponse(digest=digest, location=location)


@router.get("/{digest}")
async def get_publication(digest: str, config: ArchiveConfig = Depends(get_archive_config)):
    """
    Get a stored record.

    Raises:
        - 400: Malformed digest
        - 404: Record not stored
    """
    return await asyncio.to_thread(storage.read_record, config.directory, digest)


@router.get("/{digest}/timestamps", response_model=TimestampListResponse)
async def list_timestamps(digest: str, config: ArchiveConfig = Depends(get_archive_config)):
    """List the public keys that have timestamped a record."""
    keys = await asyncio.to_thread(storage.list_timestamp_keys, config.directory, digest)
    return TimestampListResponse(digest=digest, keys=keys)


@router.get("/{digest}/timestamps/{key}")
async def get_timestamp(digest: str, key: str, config: ArchiveConfig = Depends(get_archive_config)):
    """Get the timestamp of a record signed by `key`."""
    return await asyncio.to_thread(storage.read_timestamp, config.directory, digest, key)


@router.get("/{digest}/attachments/{attachment_digest}")
async def get_attachment(
    digest: str,
    attachment_digest: str,
    config: ArchiveConfig = Depends(get_archive_config)
):
    """
    Download an attachment with its stored content type.

    Raises:
        - 400: Malformed digest
        - 404: Attachment not stored
    """
    path = storage.attachment_path(config.directory, digest, attachment_digest)
    if not await asyncio.to_thread(storage.exists, path):
        raise NotFoundError(f"Attachment {attachment_digest} of {digest} not found")

    content_type = await asyncio.to_thread(
        storage.read_attachment_type, config.directory, digest, attachment_digest
    )
    return FileResponse(path, headers={"content-type": content_type or DEFAULT_ATTACHMENT_CONTENT_TYPE})
