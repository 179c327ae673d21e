"""Tests for tracked writes, rollback and per-digest locks."""

import asyncio

import pytest

from archive.accession_log import count_accessions
from archive.locks import DigestLocks
from archive.persistence import WriteSet, gather_all, log_accession, now_iso
from common.logging_config import get_logger

log = get_logger(__name__)


async def chunks(*parts):
    for part in parts:
        yield part


class TestGatherAll:
    """Test settle-then-raise semantics."""

    @pytest.mark.asyncio
    async def test_siblings_finish_before_error(self):
        finished = []

        async def slow():
            await asyncio.sleep(0.01)
            finished.append("slow")

        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await gather_all(failing(), slow())

        assert finished == ["slow"]

    @pytest.mark.asyncio
    async def test_results_returned(self):
        async def value(n):
            return n

        assert await gather_all(value(1), value(2)) == [1, 2]


class TestWriteSet:
    """Test file tracking and rollback."""

    @pytest.mark.asyncio
    async def test_rollback_removes_only_created_files(self, tmp_path):
        existing = tmp_path / "existing"
        existing.write_bytes(b"keep")
        writes = WriteSet(log)

        assert await writes.write(existing, b"overwrite?") is False
        assert await writes.write(tmp_path / "new", b"x") is True
        assert await writes.write_stream(tmp_path / "streamed", chunks(b"a", b"b")) is True
        await writes.rollback()

        assert existing.read_bytes() == b"keep"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["existing"]
        assert writes.created == []

    @pytest.mark.asyncio
    async def test_stream_not_consumed_when_file_exists(self, tmp_path):
        path = tmp_path / "attachment"
        path.write_bytes(b"stored")
        consumed = []

        async def tracked():
            consumed.append(True)
            yield b"new"

        assert await WriteSet(log).write_stream(path, tracked()) is False
        assert consumed == []
        assert path.read_bytes() == b"stored"

    @pytest.mark.asyncio
    async def test_failed_stream_is_tracked(self, tmp_path):
        path = tmp_path / "partial"
        writes = WriteSet(log)

        async def broken():
            yield b"half"
            raise ConnectionError("dropped")

        with pytest.raises(ConnectionError):
            await writes.write_stream(path, broken())

        assert writes.created == [path]
        await writes.rollback()
        assert not path.exists()

    def test_now_iso_is_utc_with_milliseconds(self):
        value = now_iso()

        assert value.endswith("Z")
        assert len(value.split(".")[1]) == 4


class TestWriteSetCancellation:
    """Test that cancelled writes are still tracked and rolled back."""

    @pytest.mark.asyncio
    async def test_cancelled_write_is_rolled_back(self, tmp_path):
        path = tmp_path / "record"
        writes = WriteSet(log)

        task = asyncio.create_task(writes.write(path, b"data"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await writes.rollback()

        assert not path.exists()
        assert writes.created == []

    @pytest.mark.asyncio
    async def test_cancelled_stream_is_rolled_back(self, tmp_path):
        path = tmp_path / "attachment"
        writes = WriteSet(log)
        started = asyncio.Event()
        never = asyncio.Event()

        async def stalled():
            yield b"first"
            started.set()
            await never.wait()
            yield b"second"

        task = asyncio.create_task(writes.write_stream(path, stalled()))
        await asyncio.wait_for(started.wait(), 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await writes.rollback()

        assert not path.exists()
        assert writes.created == []

    @pytest.mark.asyncio
    async def test_logged_files_survive_rollback(self, tmp_path):
        path = tmp_path / "record"
        writes = WriteSet(log)

        await writes.write(path, b"data")
        await log_accession(writes, tmp_path, now_iso(), "ab" + "0" * 62)
        await writes.rollback()

        assert path.read_bytes() == b"data"
        assert count_accessions(tmp_path) == 1


class TestDigestLocks:
    """Test per-digest serialization."""

    @pytest.mark.asyncio
    async def test_same_digest_serialized(self):
        locks = DigestLocks()
        order = []

        async def worker(name):
            async with locks.hold("d"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_digests_independent(self):
        locks = DigestLocks()

        async with locks.hold("a"):
            async with locks.hold("b"):
                assert len(locks) == 2
