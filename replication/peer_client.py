"""
HTTP client for the replication endpoints of a peer.

Wraps an httpx.AsyncClient and maps transport failures, unexpected statuses
and undecodable bodies onto the archive exception hierarchy.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Tuple

import httpx

from common.config import request_timeout
from common.constants import DEFAULT_ATTACHMENT_CONTENT_TYPE
from common.exceptions import ParseError, TransportError
from common.logging_config import get_logger
from common.types import Peer

logger = get_logger(__name__)


class PeerClient:
    """
    Async client for peer accession feeds, records, timestamps and attachments.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the peer client.

        Args:
            client: httpx client to use; one is created (and owned) if None
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout())

    async def close(self):
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> 'PeerClient':
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def accession_lines(self, peer: Peer, start: int) -> AsyncIterator[str]:
        """
        Stream the raw lines of a peer's accession feed.

        Args:
            peer: Peer to read from
            start: First accession number requested

        Yields:
            One CSV line per accession, as received

        Raises:
            TransportError: On connection failure or non-2xx status
        """
        url = f"{peer.endpoint}/accessions"
        try:
            async with self._client.stream(
                "GET", url,
                params={"from": str(start)},
                headers={"accept": "text/csv"}
            ) as response:
                self._check(response, url)
                async for line in response.aiter_lines():
                    yield line
        except httpx.HTTPError as e:
            raise TransportError(f"Accession stream from {peer.endpoint} failed: {e}") from e

    async def fetch_record(self, peer: Peer, digest: str) -> Any:
        """
        Fetch a record body from a peer.

        Raises:
            TransportError: On connection failure or non-2xx status
            ParseError: If the body is not JSON
        """
        url = f"{peer.endpoint}/publications/{digest}"
        response = await self._get(url, headers={"accept": "application/json"})
        self._check(response, url)
        return self._parse_json(response, url)

    async def fetch_timestamp(self, peer: Peer, digest: str) -> Any:
        """
        Fetch the timestamp a peer signed for digest.

        Anything but 200 is a failure.

        Raises:
            TransportError: On connection failure or non-200 status
            ParseError: If the body is not JSON
        """
        url = f"{peer.endpoint}/publications/{digest}/timestamps/{peer.encoded_key}"
        response = await self._get(url, headers={"accept": "application/json"})
        if response.status_code != 200:
            logger.error(f"Failed to get timestamp [url={url}] [status_code={response.status_code}]")
            raise TransportError("Could not get timestamp", status_code=response.status_code)
        return self._parse_json(response, url)

    @asynccontextmanager
    async def attachment(
        self,
        peer: Peer,
        digest: str,
        attachment_digest: str
    ) -> AsyncIterator[Tuple[str, AsyncIterator[bytes]]]:
        """
        Open a streaming download of an attachment.

        Usage:
            async with client.attachment(peer, digest, a) as (content_type, chunks):
                async for chunk in chunks:
                    ...

        Raises:
            TransportError: On connection failure or non-2xx status
        """
        url = f"{peer.endpoint}/publications/{digest}/attachments/{attachment_digest}"
        try:
            async with self._client.stream("GET", url) as response:
                self._check(response, url)
                content_type = response.headers.get("content-type", DEFAULT_ATTACHMENT_CONTENT_TYPE)
                yield content_type, response.aiter_bytes()
        except httpx.HTTPError as e:
            raise TransportError(f"Attachment download from {url} failed: {e}") from e

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.get(url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, url: str) -> None:
        if not response.is_success:
            raise TransportError(
                f"{url} returned status {response.status_code}",
                status_code=response.status_code
            )

    @staticmethod
    def _parse_json(response: httpx.Response, url: str) -> Any:
        try:
            return json.loads(response.content)
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {url}: {e}") from e
