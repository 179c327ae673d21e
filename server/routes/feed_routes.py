"""Accession feed and node status routes."""

import asyncio

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from archive.accession_log import count_accessions, read_accessions_from
from common.types import ArchiveConfig
from server.dependencies import get_archive_config
from server.schemas.common import StatusResponse

router = APIRouter(tags=["Feed"])


@router.get("/accessions")
async def get_accessions(
    start: int = Query(1, alias="from", ge=1),
    config: ArchiveConfig = Depends(get_archive_config)
):
    """
    Stream this node's accession log.

    Parameters:
        - from: First accession number to return (1-based, default 1)

    Returns:
        text/csv body, one `isoTime,digest` line per accession
    """
    lines = (f"{line}\n" for _, line in read_accessions_from(config.directory, start))
    return StreamingResponse(lines, media_type="text/csv")


@router.get("/", response_model=StatusResponse)
async def get_status(config: ArchiveConfig = Depends(get_archive_config)):
    """Node identity and accession count."""
    accessions = await asyncio.to_thread(count_accessions, config.directory)
    return StatusResponse(
        status="running",
        hostname=config.hostname,
        public_key=config.keypair.public.hex(),
        accessions=accessions
    )
