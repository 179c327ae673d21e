"""Shared pytest fixtures for all tests."""

import json
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from archive.integrity import canonicalize, compute_digest, document_digest, make_timestamp
from archive.keys import generate_keypair
from common.types import ArchiveConfig, KeyPair, Peer
from replication.peer_client import PeerClient

PEER_ENDPOINT = "https://peer.test"


def make_record(finding: str = "Widget firmware accepts unsigned updates", **fields) -> dict:
    """
    Build a valid publication record.

    Args:
        finding: Finding text, varied to get distinct digests
        **fields: Extra or overriding record fields

    Returns:
        Record dict
    """
    record = {
        "version": "1.0.0",
        "name": "Ada Researcher",
        "finding": finding,
        "legal": "Published under CC-BY-4.0",
    }
    record.update(fields)
    return record


def sign_record(record: dict, keypair: KeyPair, uri: str = None, time: str = "2024-01-01T00:00:00.000Z") -> dict:
    """Timestamp document for record signed by keypair."""
    digest = document_digest(record)
    uri = uri or f"{PEER_ENDPOINT}/publications/{digest}"
    return make_timestamp(digest, uri, time, keypair, "1.0.0")


class FakePeer:
    """
    In-memory peer serving the replication endpoints over httpx.MockTransport.

    Usage:
        fake = FakePeer(keypair)
        digest = fake.add(record, attachments={b"...": "text/plain"})
        client = PeerClient(httpx.AsyncClient(transport=fake.transport()))
    """

    def __init__(self, keypair: KeyPair, endpoint: str = PEER_ENDPOINT):
        self.keypair = keypair
        self.endpoint = endpoint
        self.accessions: List[str] = []
        self.records: Dict[str, bytes] = {}
        self.timestamps: Dict[str, dict] = {}
        self.attachments: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.overrides: Dict[str, httpx.Response] = {}
        self.requests: List[httpx.Request] = []

    @property
    def peer(self) -> Peer:
        return Peer(endpoint=self.endpoint, public_key=self.keypair.public)

    def add(self, record: dict, attachments: Optional[Dict[bytes, str]] = None, announce: bool = True) -> str:
        """
        Store a record (with attachments) and, by default, announce it.

        Returns:
            Record digest
        """
        record = dict(record)
        attachments = attachments or {}
        if attachments:
            record["attachments"] = sorted(compute_digest(data) for data in attachments)
        digest = document_digest(record)
        self.records[digest] = canonicalize(record)
        self.timestamps[digest] = sign_record(record, self.keypair)
        for data, content_type in attachments.items():
            self.attachments[(digest, compute_digest(data))] = (data, content_type)
        if announce:
            self.accessions.append(digest)
        return digest

    def announce(self, digest: str) -> None:
        self.accessions.append(digest)

    def override(self, path: str, response: httpx.Response) -> None:
        """Answer requests for path with response instead."""
        self.overrides[path] = response

    def requested(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.overrides:
            return self.overrides[path]

        parts = path.strip("/").split("/")
        if parts == ["accessions"]:
            start = int(request.url.params.get("from", "1"))
            body = "".join(
                f"2024-01-01T00:00:00.000Z,{digest}\n"
                for number, digest in enumerate(self.accessions, start=1)
                if number >= start
            )
            return httpx.Response(200, text=body, headers={"content-type": "text/csv"})

        if len(parts) == 2 and parts[0] == "publications" and parts[1] in self.records:
            return httpx.Response(
                200, content=self.records[parts[1]],
                headers={"content-type": "application/json"}
            )

        if len(parts) == 4 and parts[2] == "timestamps":
            timestamp = self.timestamps.get(parts[1])
            if timestamp is not None and parts[3] == self.keypair.public.hex():
                return httpx.Response(200, json=timestamp)

        if len(parts) == 4 and parts[2] == "attachments":
            attachment = self.attachments.get((parts[1], parts[3]))
            if attachment is not None:
                data, content_type = attachment
                return httpx.Response(200, content=data, headers={"content-type": content_type})

        return httpx.Response(404, json={"detail": "Not found", "code": "NOT_FOUND"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def node_keypair():
    return generate_keypair()


@pytest.fixture
def peer_keypair():
    return generate_keypair()


@pytest.fixture
def archive_config(tmp_path, node_keypair):
    """
    Create an archive node rooted in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture
        node_keypair: Node identity

    Returns:
        ArchiveConfig for the temporary node
    """
    directory = tmp_path / "archive"
    directory.mkdir()
    return ArchiveConfig(directory=directory, hostname="archive.test", keypair=node_keypair)


@pytest.fixture
def sample_record():
    return make_record()


@pytest.fixture
def fake_peer(peer_keypair):
    return FakePeer(peer_keypair)


@pytest.fixture
def peer_client(fake_peer):
    """PeerClient wired to the fake peer."""
    return PeerClient(httpx.AsyncClient(transport=fake_peer.transport()))


def read_json(path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
