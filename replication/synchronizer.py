"""
Record synchronizer: reconciles one announced accession with local storage.

Each accession moves through a fixed sequence of states. A stage is a group
of steps; steps of a parallel stage run concurrently and all settle before
the next stage begins. Every step carries a guard evaluated from the probe
results, and a step whose guard is false is skipped.

    STARTED -> PROBED -> FETCHED -> VALIDATED -> PERSISTED -> LOGGED -> COMMITTED
                        (any failure) -> FAILED, created files unlinked
"""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from archive import storage
from archive.integrity import (
    IncrementalDigestCalculator,
    canonicalize,
    document_digest,
    verify_signature,
)
from archive.locks import DEFAULT_LOCKS, DigestLocks
from archive.persistence import (
    WriteSet,
    gather_all,
    log_accession,
    now_iso,
    own_timestamp,
    own_timestamp_path,
)
from archive.schemas import PUBLICATION, TIMESTAMP, DEFAULT_REGISTRY, SchemaRegistry
from common.constants import SIGNATURE_BYTES
from common.encoding import decode
from common.exceptions import AuthenticityError, IntegrityError, SchemaValidationError
from common.logging_config import ContextAdapter, get_logger
from common.types import Accession, ArchiveConfig, Peer
from replication.peer_client import PeerClient

logger = get_logger(__name__)


class SyncState(enum.Enum):
    STARTED = "started"
    PROBED = "probed"
    FETCHED = "fetched"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    LOGGED = "logged"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class SyncAttempt:
    """
    Everything one synchronization attempt learns and does.
    """
    peer: Peer
    accession: Accession
    time: str
    log: ContextAdapter
    writes: WriteSet
    state: SyncState = SyncState.STARTED
    have_record: bool = False
    have_peer_timestamp: bool = False
    record: Any = None
    peer_timestamp: Any = None
    created_record: bool = False
    skipped: List[str] = field(default_factory=list)

    @property
    def digest(self) -> str:
        return self.accession.digest


Guard = Callable[[SyncAttempt], bool]
Step = Callable[['RecordSynchronizer', SyncAttempt], Awaitable[None]]


def always(attempt: SyncAttempt) -> bool:
    return True


def record_missing(attempt: SyncAttempt) -> bool:
    return not attempt.have_record


def peer_timestamp_missing(attempt: SyncAttempt) -> bool:
    return not attempt.have_peer_timestamp


def anything_missing(attempt: SyncAttempt) -> bool:
    return not (attempt.have_record and attempt.have_peer_timestamp)


def record_created(attempt: SyncAttempt) -> bool:
    return attempt.created_record


@dataclass(frozen=True)
class Stage:
    """Steps that move an attempt into `state`."""
    state: SyncState
    steps: Tuple[Tuple[Guard, Step], ...]
    parallel: bool = False


class RecordSynchronizer:
    """
    Runs the per-accession pipeline for records announced by peers.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        client: PeerClient,
        registry: Optional[SchemaRegistry] = None,
        locks: Optional[DigestLocks] = None
    ):
        """
        Initialize the synchronizer.

        Args:
            config: Local node configuration
            client: Client used to reach peers
            registry: Schema registry (default: shipped schemas)
            locks: Per-digest locks shared with the publisher
        """
        self.config = config
        self.client = client
        self.registry = registry or DEFAULT_REGISTRY
        self.locks = locks or DEFAULT_LOCKS

    async def synchronize(self, peer: Peer, accession: Accession) -> SyncAttempt:
        """
        Reconcile one accession and advance the peer's cursor.

        On failure or cancellation every file created by this attempt is
        removed, the cursor is left unchanged and the exception is re-raised.

        Args:
            peer: Peer that announced the accession; its cursor is updated
            accession: Announced (number, digest)

        Returns:
            The committed SyncAttempt

        Raises:
            ArchiveError: Transport, parse, validation, integrity,
                authenticity or storage failure
        """
        log = logger.child(peer=peer.endpoint, accession=accession.number, digest=accession.digest)
        attempt = SyncAttempt(
            peer=peer,
            accession=accession,
            time=now_iso(),
            log=log,
            writes=WriteSet(log),
        )
        async with self.locks.hold(accession.digest):
            try:
                for stage in STAGES:
                    await self._run_stage(stage, attempt)
            except BaseException as e:
                attempt.state = SyncState.FAILED
                log.error(f"Synchronization failed: {type(e).__name__}: {e}")
                await asyncio.shield(attempt.writes.rollback())
                raise
        log.info("Done")
        return attempt

    async def _run_stage(self, stage: Stage, attempt: SyncAttempt) -> None:
        active = []
        for guard, step in stage.steps:
            if guard(attempt):
                active.append(step)
            else:
                attempt.skipped.append(step.__name__)
        if stage.parallel:
            await gather_all(*(step(self, attempt) for step in active))
        else:
            for step in active:
                await step(self, attempt)
        attempt.state = stage.state
        attempt.log.debug(f"Entered state {stage.state.value}")

    # Probe

    async def check_have_record(self, attempt: SyncAttempt) -> None:
        path = storage.record_path(self.config.directory, attempt.digest)
        attempt.have_record = await asyncio.to_thread(storage.exists, path)
        attempt.log.info(f"Probed record [have_record={attempt.have_record}]")

    async def check_have_peer_timestamp(self, attempt: SyncAttempt) -> None:
        path = storage.timestamp_path(self.config.directory, attempt.digest, attempt.peer.encoded_key)
        attempt.have_peer_timestamp = await asyncio.to_thread(storage.exists, path)
        attempt.log.info(f"Probed peer timestamp [have_peer_timestamp={attempt.have_peer_timestamp}]")

    # Fetch

    async def get_record(self, attempt: SyncAttempt) -> None:
        if attempt.have_record:
            record = await asyncio.to_thread(storage.read_record, self.config.directory, attempt.digest)
            if document_digest(record) != attempt.digest:
                raise IntegrityError("stored record does not match announced digest")
            attempt.record = record
            attempt.log.info("Read local record")
        else:
            attempt.record = await self.client.fetch_record(attempt.peer, attempt.digest)
            attempt.log.info("Got record")

    async def get_peer_timestamp(self, attempt: SyncAttempt) -> None:
        attempt.peer_timestamp = await self.client.fetch_timestamp(attempt.peer, attempt.digest)
        attempt.log.info("Got timestamp")

    # Validate

    async def validate_record(self, attempt: SyncAttempt) -> None:
        errors = self.registry.validate(attempt.record, PUBLICATION)
        if errors:
            attempt.log.info(f"Invalid publication [errors={errors}]")
            raise SchemaValidationError("invalid record", errors)
        if document_digest(attempt.record) != attempt.digest:
            raise IntegrityError("reported and computed digests do not match")
        attempt.log.info("Validated record")

    async def validate_peer_timestamp(self, attempt: SyncAttempt) -> None:
        errors = self.registry.validate(attempt.peer_timestamp, TIMESTAMP)
        if errors:
            attempt.log.info(f"Invalid timestamp [errors={errors}]")
            raise SchemaValidationError("invalid timestamp", errors)
        body = attempt.peer_timestamp["timestamp"]
        if body["digest"] != document_digest(attempt.record):
            attempt.log.error("Timestamp digest mismatch")
            raise IntegrityError("peer timestamp digest does not match record")
        signature = decode(attempt.peer_timestamp["signature"], SIGNATURE_BYTES)
        if not verify_signature(signature, canonicalize(body), attempt.peer.public_key):
            attempt.log.error("Invalid peer signature")
            raise AuthenticityError("invalid peer signature")
        attempt.log.info("Validated timestamp")

    async def make_directory(self, attempt: SyncAttempt) -> None:
        await asyncio.to_thread(storage.ensure_directory, self.config.directory, attempt.digest)

    # Persist

    async def save_own_timestamp(self, attempt: SyncAttempt) -> None:
        document = own_timestamp(self.config, attempt.digest, attempt.time, self.registry)
        await attempt.writes.write_json(own_timestamp_path(self.config, attempt.digest), document)
        attempt.log.info("Saved own timestamp")

    async def save_peer_timestamp(self, attempt: SyncAttempt) -> None:
        path = storage.timestamp_path(self.config.directory, attempt.digest, attempt.peer.encoded_key)
        await attempt.writes.write_json(path, attempt.peer_timestamp)
        attempt.log.info("Saved peer timestamp")

    async def save_record(self, attempt: SyncAttempt) -> None:
        path = storage.record_path(self.config.directory, attempt.digest)
        attempt.created_record = await attempt.writes.write_json(path, attempt.record)
        attempt.log.info(f"Saved record [created={attempt.created_record}]")

    async def get_and_save_attachments(self, attempt: SyncAttempt) -> None:
        await gather_all(*(
            self._get_and_save_attachment(attempt, attachment_digest)
            for attachment_digest in attempt.record.get("attachments", [])
        ))

    async def _get_and_save_attachment(self, attempt: SyncAttempt, attachment_digest: str) -> None:
        attachment_log = attempt.log.child(attachment=attachment_digest)
        path = storage.attachment_path(self.config.directory, attempt.digest, attachment_digest)
        type_path = storage.content_type_path(path)
        if await asyncio.to_thread(storage.exists, path) and await asyncio.to_thread(storage.exists, type_path):
            attachment_log.info("Already have attachment")
            return

        calculator = IncrementalDigestCalculator()

        async def hashed(chunks):
            async for chunk in chunks:
                calculator.update(chunk)
                yield chunk

        async with self.client.attachment(attempt.peer, attempt.digest, attachment_digest) as (content_type, chunks):
            created = await attempt.writes.write_stream(path, hashed(chunks))
        if created and calculator.finalize() != attachment_digest:
            raise IntegrityError(f"attachment {attachment_digest} does not match its digest")
        attachment_log.info("Downloaded")
        await attempt.writes.write(type_path, content_type.encode("utf-8"))
        attachment_log.info("Wrote type file")

    # Log and commit

    async def append_to_accessions(self, attempt: SyncAttempt) -> None:
        await log_accession(attempt.writes, self.config.directory, attempt.time, attempt.digest)
        attempt.log.info("Appended to accessions")

    async def bump_accession_number(self, attempt: SyncAttempt) -> None:
        attempt.peer.advance(attempt.accession.number)
        attempt.log.info(f"Bumped [last={attempt.peer.last}]")


STAGES = (
    Stage(SyncState.PROBED, (
        (always, RecordSynchronizer.check_have_record),
        (always, RecordSynchronizer.check_have_peer_timestamp),
    ), parallel=True),
    Stage(SyncState.FETCHED, (
        (always, RecordSynchronizer.get_record),
        (peer_timestamp_missing, RecordSynchronizer.get_peer_timestamp),
    ), parallel=True),
    Stage(SyncState.VALIDATED, (
        (record_missing, RecordSynchronizer.validate_record),
        (peer_timestamp_missing, RecordSynchronizer.validate_peer_timestamp),
        (anything_missing, RecordSynchronizer.make_directory),
    )),
    Stage(SyncState.PERSISTED, (
        (record_missing, RecordSynchronizer.save_own_timestamp),
        (peer_timestamp_missing, RecordSynchronizer.save_peer_timestamp),
        (record_missing, RecordSynchronizer.save_record),
        (record_missing, RecordSynchronizer.get_and_save_attachments),
    ), parallel=True),
    Stage(SyncState.LOGGED, (
        (record_created, RecordSynchronizer.append_to_accessions),
    )),
    Stage(SyncState.COMMITTED, (
        (always, RecordSynchronizer.bump_accession_number),
    )),
)
