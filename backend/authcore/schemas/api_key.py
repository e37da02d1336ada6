"""API key schemas."""
from datetime import datetime

from pydantic import Field

from authcore.schemas.auth import CamelModel


class ApiKeyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)


class ApiKeyResponse(CamelModel):
    id: int
    name: str
    key_prefix: str
    created_by_id: int | None = None
    created_at: datetime
    revoked_at: datetime | None = None


class ApiKeyCreatedResponse(ApiKeyResponse):
    # Only returned once, at creation
    key: str
