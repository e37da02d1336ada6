"""Authentication schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel

from authcore.roles import Role


class CamelModel(BaseModel):
    """Base model exchanged on the wire with camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class RefreshRequest(CamelModel):
    """Token refresh request."""

    refresh_token: str


class LogoutRequest(CamelModel):
    """Logout request; both fields optional.

    Logout never fails, so values of the wrong type are treated as absent.
    """

    refresh_token: str | None = None
    logout_all: bool = False

    @field_validator("refresh_token", mode="before")
    @classmethod
    def ignore_non_string_token(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("logout_all", mode="before")
    @classmethod
    def ignore_non_boolean_flag(cls, value: Any) -> bool:
        return value if isinstance(value, bool) else False


class TokenPairResponse(CamelModel):
    """Token response."""

    access_token: str
    refresh_token: str
    expires_in: int


class IdentityResponse(CamelModel):
    """Claims of a verified access token."""

    id: int
    email: str
    role: Role


class SessionResponse(CamelModel):
    """An active refresh token, without the token itself."""

    id: int
    family_id: str
    created_at: datetime
    expires_at: datetime
    is_used: bool
    used_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class MessageResponse(BaseModel):
    """Generic message response."""

    success: bool = True
    message: str
