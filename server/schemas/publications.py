"""Pydantic schemas for publication endpoints."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from common.constants import DEFAULT_ATTACHMENT_CONTENT_TYPE


class AttachmentUpload(BaseModel):
    """An attachment sent inline with a publish request."""
    data: str = Field(..., description="Base64-encoded attachment bytes")
    content_type: str = DEFAULT_ATTACHMENT_CONTENT_TYPE


class PublishRequest(BaseModel):
    """Request model for publishing a record."""
    record: Dict[str, Any]
    attachments: List[AttachmentUpload] = []


class PublishResponse(BaseModel):
    """Response model for a published record."""
    digest: str
    location: str


class TimestampListResponse(BaseModel):
    """Response model for the signers of a record."""
    digest: str
    keys: List[str]
