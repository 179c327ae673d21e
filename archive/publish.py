"""Publish entry point for records originated on this node."""

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional

from archive import storage
from archive.integrity import compute_digest, document_digest
from archive.locks import DEFAULT_LOCKS, DigestLocks
from archive.persistence import (
    WriteSet,
    gather_all,
    log_accession,
    now_iso,
    own_timestamp,
    own_timestamp_path,
)
from archive.schemas import PUBLICATION, DEFAULT_REGISTRY, SchemaRegistry
from common.constants import DEFAULT_ATTACHMENT_CONTENT_TYPE
from common.exceptions import IntegrityError, SchemaValidationError
from common.logging_config import get_logger
from common.types import ArchiveConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class Attachment:
    """An uploaded file to store with a record."""
    data: bytes
    content_type: str = DEFAULT_ATTACHMENT_CONTENT_TYPE

    @property
    def digest(self) -> str:
        return compute_digest(self.data)


async def publish(
    config: ArchiveConfig,
    record: dict,
    attachments: Iterable[Attachment] = (),
    registry: Optional[SchemaRegistry] = None,
    locks: Optional[DigestLocks] = None
) -> str:
    """
    Validate and store a locally originated record.

    Attachment digests become the record's `attachments` list and a missing
    `version` defaults to the latest publication schema. The record, this
    node's signed timestamp and the attachments are written, then the record
    is appended to the accession log. Publishing a stored record again is a
    no-op.

    Args:
        config: Local node configuration
        record: Publication record (not modified)
        attachments: Files referenced by the record
        registry: Schema registry (default: shipped schemas)
        locks: Per-digest locks shared with replication

    Returns:
        Digest of the stored record

    Raises:
        SchemaValidationError: If the record fails its schema
        IntegrityError: If the record references an attachment not supplied
        StorageError: If writing fails (partial writes are rolled back)
    """
    registry = registry or DEFAULT_REGISTRY
    locks = locks or DEFAULT_LOCKS
    attachments = {attachment.digest: attachment for attachment in attachments}

    record = dict(record)
    if attachments:
        record["attachments"] = sorted(attachments)
    record.setdefault("version", registry.latest(PUBLICATION))

    missing = [d for d in record.get("attachments", []) if d not in attachments]
    if missing:
        raise IntegrityError(f"Record references attachments not supplied: {missing}")

    errors = registry.validate(record, PUBLICATION)
    if errors:
        logger.info(f"Invalid publication: {errors}")
        raise SchemaValidationError("invalid record", errors)

    digest = document_digest(record)
    log = logger.child(digest=digest)

    async with locks.hold(digest):
        directory = config.directory
        if await asyncio.to_thread(storage.exists, storage.record_path(directory, digest)):
            log.info("Already published")
            return digest

        time = now_iso()
        writes = WriteSet(log)
        try:
            await asyncio.to_thread(storage.ensure_directory, directory, digest)
            steps = [
                writes.write_json(storage.record_path(directory, digest), record),
                writes.write_json(
                    own_timestamp_path(config, digest),
                    own_timestamp(config, digest, time, registry)
                ),
            ]
            for attachment_digest, attachment in attachments.items():
                path = storage.attachment_path(directory, digest, attachment_digest)
                steps.append(writes.write(path, attachment.data))
                steps.append(writes.write(
                    storage.content_type_path(path),
                    attachment.content_type.encode("utf-8")
                ))
            await gather_all(*steps)
            await log_accession(writes, directory, time, digest)
        except BaseException as e:
            log.error(f"Publish failed: {type(e).__name__}: {e}")
            await asyncio.shield(writes.rollback())
            raise

    log.info(f"Published [attachments={len(attachments)}]")
    return digest
