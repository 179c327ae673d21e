"""
Replication driver.

Runs one replication cycle across all registered peers, and a background
service that repeats the cycle on a fixed interval.
"""

import asyncio
from contextlib import aclosing
from typing import List, Optional

from archive.locks import DigestLocks
from archive.schemas import SchemaRegistry
from common.config import REPLICATION_INTERVAL
from common.logging_config import get_logger
from common.types import ArchiveConfig, Peer, PeerOutcome
from replication.accession_stream import read_accessions
from replication.peer_client import PeerClient
from replication.peer_registry import load_peers, save_peers
from replication.synchronizer import RecordSynchronizer

logger = get_logger(__name__)


async def replicate_peer(
    synchronizer: RecordSynchronizer,
    client: PeerClient,
    peer: Peer
) -> PeerOutcome:
    """
    Pull and reconcile a peer's new accessions, strictly in order.

    The first failing accession ends the peer's cycle; the cursor stays at
    the last accession that was fully reconciled. Errors are captured in the
    outcome rather than raised.

    Args:
        synchronizer: Pipeline to run per accession
        client: Peer HTTP client
        peer: Peer to replicate; its cursor is advanced in place

    Returns:
        PeerOutcome with the number of accessions reconciled and any error
    """
    outcome = PeerOutcome(peer=peer, starting_cursor=peer.last)
    peer_log = logger.child(peer=peer.endpoint)
    peer_log.info(f"Replicating [from={peer.last + 1}]")
    try:
        async with aclosing(read_accessions(client, peer)) as accessions:
            async for accession in accessions:
                await synchronizer.synchronize(peer, accession)
                outcome.replicated += 1
    except Exception as e:
        outcome.error = e
        peer_log.error(
            f"Replication stopped: {type(e).__name__}: {e} "
            f"[replicated={outcome.replicated}] [last={peer.last}]"
        )
        return outcome

    peer_log.info(f"Replicated [count={outcome.replicated}] [last={peer.last}]")
    return outcome


async def replicate_peers(
    config: ArchiveConfig,
    client: Optional[PeerClient] = None,
    registry: Optional[SchemaRegistry] = None,
    locks: Optional[DigestLocks] = None
) -> List[PeerOutcome]:
    """
    Run one replication cycle over every registered peer.

    Peers are replicated concurrently and independently. Once all have
    finished, cursors (including partial progress) are written back to the
    registry, unless there were no peers at all.

    Args:
        config: Local node configuration
        client: Peer HTTP client (a new one is created and closed if None)
        registry: Schema registry override
        locks: Per-digest locks override

    Returns:
        One PeerOutcome per peer, in registry order
    """
    peers = await asyncio.to_thread(load_peers, config.directory)
    logger.info(f"Read peers [peers={[peer.endpoint for peer in peers]}]")
    if not peers:
        logger.info("Done")
        return []

    owns_client = client is None
    client = client or PeerClient()
    try:
        synchronizer = RecordSynchronizer(config, client, registry=registry, locks=locks)
        outcomes = await asyncio.gather(*(
            replicate_peer(synchronizer, client, peer) for peer in peers
        ))
    finally:
        if owns_client:
            await client.close()

    await asyncio.to_thread(save_peers, config.directory, peers)

    failed = sum(1 for outcome in outcomes if not outcome.succeeded)
    logger.info(
        f"Done [peers={len(peers)}] [failed={failed}] "
        f"[replicated={sum(outcome.replicated for outcome in outcomes)}]"
    )
    return list(outcomes)


class ReplicationService:
    """
    Background task running a replication cycle every `interval` seconds.
    """

    def __init__(
        self,
        config: ArchiveConfig,
        interval: int = REPLICATION_INTERVAL,
        client: Optional[PeerClient] = None
    ):
        """
        Initialize the replication service.

        Args:
            config: Local node configuration
            interval: Seconds to wait between the end of one cycle and the next
            client: Peer HTTP client shared by all cycles
        """
        self.config = config
        self.interval = interval
        self.client = client
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self.cycles = 0

    async def start(self):
        """Start the replication background task."""
        if self.running:
            logger.warning("Replication service already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._replication_loop())
        logger.info(f"Replication service started [interval={self.interval}s]")

    async def stop(self):
        """Stop the replication background task."""
        if not self.running:
            return

        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        logger.info("Replication service stopped")

    async def _replication_loop(self):
        while self.running:
            try:
                await replicate_peers(self.config, client=self.client)
            except Exception as e:
                logger.error(f"Error in replication cycle: {e}", exc_info=True)
            self.cycles += 1

            await asyncio.sleep(self.interval)
