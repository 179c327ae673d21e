"""Accession stream reader: turns a peer's feed into numbered accessions."""

from contextlib import aclosing
from typing import AsyncIterator

from common.encoding import is_digest
from common.exceptions import ParseError
from common.types import Accession, Peer
from replication.peer_client import PeerClient


def parse_accession_line(line: str, number: int) -> Accession:
    """
    Decode one feed line; the digest is the second comma field.

    Raises:
        ParseError: If the line has no well-formed digest
    """
    fields = line.split(",")
    if len(fields) < 2:
        raise ParseError(f"Accession line {number} has no digest field: {line!r}")
    digest = fields[1].strip()
    if not is_digest(digest):
        raise ParseError(f"Accession line {number} has a malformed digest: {digest!r}")
    return Accession(number=number, digest=digest)


async def read_accessions(client: PeerClient, peer: Peer) -> AsyncIterator[Accession]:
    """
    Yield the accessions a peer has beyond its cursor, in order.

    The feed does not repeat accession numbers, so they are reconstructed by
    counting lines from `peer.last + 1`. Lines are pulled from the network
    only as the consumer asks for them, and a failure ends the sequence.

    Args:
        client: Peer HTTP client
        peer: Peer to read; its cursor at call time is the starting point

    Yields:
        Accession(number, digest)

    Raises:
        TransportError: If the request or the stream fails
        ParseError: If a line cannot be decoded
    """
    number = peer.last
    async with aclosing(client.accession_lines(peer, peer.last + 1)) as lines:
        async for line in lines:
            if not line.strip():
                continue
            number += 1
            yield parse_accession_line(line, number)
