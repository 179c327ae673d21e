"""Common schemas used across multiple endpoints."""

from typing import List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str
    errors: Optional[List[str]] = None


class StatusResponse(BaseModel):
    """Response model for the node status endpoint."""
    status: str
    hostname: str
    public_key: str
    accessions: int
