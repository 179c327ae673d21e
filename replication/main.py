"""Entry point for the replicator.
Loads the node configuration and pulls new records from every registered peer,
either once or on a fixed interval.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from archive.keys import load_or_create_keypair
from common.config import ARCHIVE_KEYPAIR_PATH, REPLICATION_INTERVAL, build_archive_config
from common.logging_config import setup_logging
from common.types import ArchiveConfig
from replication.driver import ReplicationService, replicate_peers

logger = setup_logging('replicator')


async def run_forever(config: ArchiveConfig, interval: int) -> None:
    """
    Run replication cycles until interrupted.

    Args:
        config: Local node configuration
        interval: Seconds between cycles
    """
    service = ReplicationService(config, interval=interval)
    await service.start()

    stopped = asyncio.Event()

    if sys.platform != 'win32':
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stopped.set)

    try:
        await stopped.wait()
        logger.info("Received signal, shutting down...")
    finally:
        await service.stop()


async def run_once(config: ArchiveConfig) -> int:
    """
    Run a single replication cycle.

    Returns:
        Process exit status: 0 if every peer succeeded, 1 otherwise
    """
    outcomes = await replicate_peers(config)
    return 0 if all(outcome.succeeded for outcome in outcomes) else 1


def main(argv=None) -> int:
    """Bootstrap the replicator."""
    parser = argparse.ArgumentParser(description="Replicate publications from peer archives")
    parser.add_argument("--once", action="store_true", help="run one cycle and exit")
    parser.add_argument(
        "--interval", type=int, default=REPLICATION_INTERVAL,
        help="seconds between cycles (default: %(default)s)"
    )
    args = parser.parse_args(argv)

    logger.info("Initializing replicator...")
    config = build_archive_config(load_or_create_keypair(Path(ARCHIVE_KEYPAIR_PATH)))
    logger.info(f"Storage directory: {config.directory}")

    try:
        if args.once:
            return asyncio.run(run_once(config))
        asyncio.run(run_forever(config, args.interval))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    return 0


if __name__ == "__main__":
    sys.exit(main())
