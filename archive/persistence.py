"""
Tracked writes into the store with best-effort rollback.

Both the replication pipeline and the publisher persist several files for one
record concurrently; a WriteSet remembers exactly which files the current
attempt created so that a failed attempt removes those and nothing else.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, List, Optional, Set

from archive import storage
from archive.accession_log import append_accession
from archive.integrity import canonicalize, make_timestamp
from archive.schemas import TIMESTAMP, SchemaRegistry, DEFAULT_REGISTRY
from common.encoding import encode
from common.exceptions import StorageError
from common.types import ArchiveConfig


def now_iso() -> str:
    """Current UTC time as ISO 8601 with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def record_uri(config: ArchiveConfig, digest: str) -> str:
    """Public URI under which this node serves a record."""
    return f"https://{config.hostname}/publications/{digest}"


def own_timestamp(
    config: ArchiveConfig,
    digest: str,
    time: str,
    registry: Optional[SchemaRegistry] = None
) -> dict:
    """Timestamp attesting this node's receipt of digest, signed with the node key."""
    version = (registry or DEFAULT_REGISTRY).latest(TIMESTAMP)
    return make_timestamp(digest, record_uri(config, digest), time, config.keypair, version)


def own_timestamp_path(config: ArchiveConfig, digest: str) -> Path:
    return storage.timestamp_path(config.directory, digest, encode(config.keypair.public))


async def gather_all(*aws) -> list:
    """
    Run awaitables concurrently and wait for every one to settle.

    Raises:
        The first exception raised by any awaitable, after all have finished
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def _close_if_opened(future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is None:
        future.result().close()


class WriteSet:
    """
    Files created by one persistence attempt.

    File creation runs in worker threads that are never abandoned: a
    cancelled caller stops waiting, but the thread still records what it
    created and rollback waits for it before unlinking.

    Usage:
        writes = WriteSet(log)
        try:
            await writes.write(path, data)
        except BaseException:
            await asyncio.shield(writes.rollback())
            raise
    """

    def __init__(self, log):
        self.created: List[Path] = []
        self.log = log
        self._pending: Set[asyncio.Future] = set()

    def _start(self, func, *args) -> asyncio.Future:
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        self._pending.add(future)
        future.add_done_callback(self._settled)
        return future

    def _settled(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled():
            future.exception()

    def _write(self, path: Path, data: bytes) -> bool:
        created = storage.write_if_absent(path, data)
        if created:
            self.created.append(path)
        return created

    def _open(self, path: Path):
        f = open(path, "xb")
        self.created.append(path)
        return f

    async def write(self, path: Path, data: bytes) -> bool:
        """
        Create path with data unless it exists.

        Returns:
            True if this attempt created the file
        """
        return await asyncio.shield(self._start(self._write, path, data))

    async def write_json(self, path: Path, document) -> bool:
        return await self.write(path, canonicalize(document))

    async def write_stream(self, path: Path, chunks: AsyncIterator[bytes]) -> bool:
        """
        Stream chunks into a newly created file.

        The stream is not consumed if the file already exists.

        Returns:
            True if this attempt created the file
        """
        opening = self._start(self._open, path)
        try:
            f = await asyncio.shield(opening)
        except FileExistsError:
            return False
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e
        except asyncio.CancelledError:
            opening.add_done_callback(_close_if_opened)
            raise

        writing = None
        try:
            async for chunk in chunks:
                writing = self._start(f.write, chunk)
                await asyncio.shield(writing)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e
        finally:
            if writing is None or writing.done():
                f.close()
            else:
                writing.add_done_callback(lambda _: f.close())
        return True

    def keep(self) -> None:
        """Forget the created files; a later rollback leaves them in place."""
        self.created = []

    async def rollback(self) -> None:
        """
        Unlink every file this attempt created; failures are only logged.

        Writes still running in worker threads are waited for first.
        """
        if self._pending:
            await asyncio.wait(list(self._pending))
        paths, self.created = self.created, []
        await asyncio.gather(*(self._unlink(path) for path in paths))

    async def _unlink(self, path: Path) -> None:
        file_log = self.log.child(file=path)
        try:
            await asyncio.to_thread(storage.remove_file, path)
        except OSError as e:
            file_log.error(f"Failed to unlink: {e}")
        else:
            file_log.info("Unlinked")


async def log_accession(writes: WriteSet, directory: Path, time: str, digest: str) -> None:
    """
    Append a stored record to the accession log.

    Once the line is on disk the attempt's files are kept: a caller cancelled
    while the append runs waits for it, and rollback no longer removes what
    the log points at.

    Raises:
        StorageError: If the log cannot be written
    """
    appending = asyncio.ensure_future(asyncio.to_thread(append_accession, directory, time, digest))
    try:
        await asyncio.shield(appending)
    except asyncio.CancelledError:
        await asyncio.wait([appending])
        if not appending.cancelled() and appending.exception() is None:
            writes.keep()
        raise
    writes.keep()
