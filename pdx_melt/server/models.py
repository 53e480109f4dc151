"""Pydantic response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for response
serialization and automatic OpenAPI documentation in /docs.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ChecksumResponse(BaseModel):
    """Content checksum of an uploaded file."""

    checksum: str = Field(description="URL-safe base64 content checksum (44 characters).")
    size: int = Field(description="Number of bytes checksummed.")


class GameInfo(BaseModel):
    """One supported game family."""

    key: str = Field(description="Game identifier used in requests (e.g. 'eu4').")
    title: str = Field(description="Human-readable game name.")
    extensions: List[str] = Field(description="Save file extensions recognized for this game.")
    encoding: str = Field(description="Text codepage of melted output.")


class ErrorResponse(BaseModel):
    """Consistent error body for all failure responses."""

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Service liveness probe."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
