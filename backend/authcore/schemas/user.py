"""User, provider account and administration schemas."""
from datetime import datetime

from authcore.models.provider_account import OAuthProvider
from authcore.roles import Role
from authcore.schemas.auth import CamelModel


class UserResponse(CamelModel):
    """User info response."""

    id: int
    email: str
    name: str | None = None
    avatar: str | None = None
    role: Role
    primary_provider_account_id: int | None = None
    created_at: datetime
    last_login_at: datetime | None = None


class UserListResponse(CamelModel):
    users: list[UserResponse]
    page: int
    limit: int
    total: int
    total_pages: int


class RoleUpdate(CamelModel):
    """Request to change a user's role."""

    role: Role


class UserStatsResponse(CamelModel):
    total: int
    by_role: dict[str, int]


class ProviderAccountResponse(CamelModel):
    """A linked identity-provider account."""

    id: int
    provider: OAuthProvider
    provider_id: str
    email: str
    name: str | None = None
    avatar: str | None = None
    linked_at: datetime
    is_primary: bool
