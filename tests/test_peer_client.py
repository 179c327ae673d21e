"""Tests for the peer HTTP client and the accession stream reader."""

from contextlib import aclosing

import httpx
import pytest

from archive.integrity import compute_digest
from common.exceptions import ParseError, TransportError
from replication.accession_stream import parse_accession_line, read_accessions
from replication.peer_client import PeerClient
from conftest import make_record

DIGEST = "ab" * 32


async def collect(client, peer):
    async with aclosing(read_accessions(client, peer)) as accessions:
        return [accession async for accession in accessions]


class TestParseAccessionLine:
    """Test decoding of feed lines."""

    def test_digest_is_second_field(self):
        accession = parse_accession_line(f"2024-01-01T00:00:00.000Z,{DIGEST}", 4)

        assert accession.number == 4
        assert accession.digest == DIGEST

    def test_trailing_carriage_return_tolerated(self):
        assert parse_accession_line(f"2024-01-01,{DIGEST}\r", 1).digest == DIGEST

    @pytest.mark.parametrize("line", ["2024-01-01", "2024-01-01,", "2024-01-01,xyz", f"2024,{DIGEST.upper()}"])
    def test_malformed_lines(self, line):
        with pytest.raises(ParseError):
            parse_accession_line(line, 1)


class TestReadAccessions:
    """Test numbering and streaming of a peer's feed."""

    @pytest.mark.asyncio
    async def test_numbers_continue_from_cursor(self, fake_peer, peer_client):
        digests = [fake_peer.add(make_record(f"finding {i}")) for i in range(5)]
        peer = fake_peer.peer
        peer.last = 2

        accessions = await collect(peer_client, peer)

        assert [a.number for a in accessions] == [3, 4, 5]
        assert [a.digest for a in accessions] == digests[2:]

    @pytest.mark.asyncio
    async def test_requests_from_next_accession(self, fake_peer, peer_client):
        peer = fake_peer.peer
        peer.last = 7

        await collect(peer_client, peer)

        assert fake_peer.requests[0].url.params["from"] == "8"
        assert fake_peer.requests[0].headers["accept"] == "text/csv"

    @pytest.mark.asyncio
    async def test_empty_feed(self, fake_peer, peer_client):
        assert await collect(peer_client, fake_peer.peer) == []

    @pytest.mark.asyncio
    async def test_blank_lines_skipped(self, fake_peer, peer_client):
        fake_peer.override("/accessions", httpx.Response(200, text=f"\nt,{DIGEST}\n\n"))

        accessions = await collect(peer_client, fake_peer.peer)

        assert [(a.number, a.digest) for a in accessions] == [(1, DIGEST)]

    @pytest.mark.asyncio
    async def test_error_status(self, fake_peer, peer_client):
        fake_peer.override("/accessions", httpx.Response(503))

        with pytest.raises(TransportError) as exc_info:
            await collect(peer_client, fake_peer.peer)

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_failure(self, fake_peer):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = PeerClient(httpx.AsyncClient(transport=httpx.MockTransport(refuse)))

        with pytest.raises(TransportError):
            await collect(client, fake_peer.peer)

    @pytest.mark.asyncio
    async def test_bad_line_ends_stream(self, fake_peer, peer_client):
        fake_peer.override("/accessions", httpx.Response(200, text=f"t,{DIGEST}\nnonsense\nt,{DIGEST}\n"))
        seen = []

        with pytest.raises(ParseError):
            async with aclosing(read_accessions(peer_client, fake_peer.peer)) as accessions:
                async for accession in accessions:
                    seen.append(accession.number)

        assert seen == [1]


class TestFetches:
    """Test record, timestamp and attachment requests."""

    @pytest.mark.asyncio
    async def test_fetch_record(self, fake_peer, peer_client):
        record = make_record()
        digest = fake_peer.add(record)

        assert await peer_client.fetch_record(fake_peer.peer, digest) == record

    @pytest.mark.asyncio
    async def test_fetch_record_not_json(self, fake_peer, peer_client):
        fake_peer.override(f"/publications/{DIGEST}", httpx.Response(200, text="<html>"))

        with pytest.raises(ParseError):
            await peer_client.fetch_record(fake_peer.peer, DIGEST)

    @pytest.mark.asyncio
    async def test_fetch_record_missing(self, fake_peer, peer_client):
        with pytest.raises(TransportError) as exc_info:
            await peer_client.fetch_record(fake_peer.peer, DIGEST)

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_fetch_timestamp_uses_peer_key(self, fake_peer, peer_client):
        digest = fake_peer.add(make_record())

        timestamp = await peer_client.fetch_timestamp(fake_peer.peer, digest)

        assert timestamp["timestamp"]["digest"] == digest
        assert fake_peer.requests[-1].url.path.endswith(f"/timestamps/{fake_peer.peer.encoded_key}")

    @pytest.mark.asyncio
    async def test_fetch_timestamp_non_200(self, fake_peer, peer_client):
        digest = fake_peer.add(make_record())
        path = f"/publications/{digest}/timestamps/{fake_peer.peer.encoded_key}"
        fake_peer.override(path, httpx.Response(204))

        with pytest.raises(TransportError) as exc_info:
            await peer_client.fetch_timestamp(fake_peer.peer, digest)

        assert exc_info.value.status_code == 204

    @pytest.mark.asyncio
    async def test_attachment_stream(self, fake_peer, peer_client):
        digest = fake_peer.add(make_record(), attachments={b"%PDF-1.7": "application/pdf"})
        attachment_digest = compute_digest(b"%PDF-1.7")

        async with peer_client.attachment(fake_peer.peer, digest, attachment_digest) as (content_type, chunks):
            body = b"".join([chunk async for chunk in chunks])

        assert content_type == "application/pdf"
        assert body == b"%PDF-1.7"
