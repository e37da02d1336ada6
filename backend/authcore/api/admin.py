"""Administrative endpoints."""
import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from authcore.api.deps import (
    get_api_key_cache,
    get_db,
    get_token_manager,
    require_any_role,
    require_exact_role,
    require_role,
)
from authcore.roles import Role
from authcore.schemas.api_key import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyResponse
from authcore.schemas.auth import MessageResponse
from authcore.schemas.user import RoleUpdate, UserListResponse, UserResponse, UserStatsResponse
from authcore.services.api_keys import ApiKeyCache, create_api_key, list_api_keys, revoke_api_key
from authcore.services.token_codec import Identity
from authcore.services.token_lifecycle import TokenLifecycleManager
from authcore.services.users import change_user_role, count_users_by_role, delete_user, list_users

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", response_model=UserListResponse)
def get_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = None,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_role(Role.ADMIN)),
):
    """List users with pagination and search."""
    users, total = list_users(db, page=page, limit=limit, search=search)
    return UserListResponse(
        users=[UserResponse.model_validate(user) for user in users],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


@router.get("/stats", response_model=UserStatsResponse)
def get_stats(
    db: Session = Depends(get_db),
    _: Identity = Depends(require_any_role([Role.ADMIN, Role.SUPERADMIN])),
):
    """User counts by role."""
    by_role = count_users_by_role(db)
    return UserStatsResponse(total=sum(by_role.values()), by_role=by_role)


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: int,
    body: RoleUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_role(Role.ADMIN)),
):
    """Change a user's role."""
    user = change_user_role(db, identity, user_id, body.role)
    db.commit()
    db.refresh(user)
    return user


@router.delete("/users/{user_id}", response_model=MessageResponse)
def remove_user(
    user_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_role(Role.ADMIN)),
):
    """Delete a user and everything they own."""
    delete_user(db, identity, user_id)
    db.commit()
    return MessageResponse(message="User deleted successfully")


@router.get("/api-keys", response_model=list[ApiKeyResponse])
def get_api_keys(
    db: Session = Depends(get_db),
    _: Identity = Depends(require_exact_role(Role.SUPERADMIN)),
):
    """List API keys (hashes are never returned)."""
    return list_api_keys(db)


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def add_api_key(
    body: ApiKeyCreate,
    db: Session = Depends(get_db),
    cache: ApiKeyCache = Depends(get_api_key_cache),
    identity: Identity = Depends(require_exact_role(Role.SUPERADMIN)),
):
    """Create an API key. The raw key is only returned here."""
    api_key, raw_key = create_api_key(db, cache, body.name, created_by_id=identity.id)
    return ApiKeyCreatedResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        created_by_id=api_key.created_by_id,
        created_at=api_key.created_at,
        revoked_at=api_key.revoked_at,
        key=raw_key,
    )


@router.delete("/api-keys/{key_id}", response_model=ApiKeyResponse)
def remove_api_key(
    key_id: int,
    db: Session = Depends(get_db),
    cache: ApiKeyCache = Depends(get_api_key_cache),
    _: Identity = Depends(require_exact_role(Role.SUPERADMIN)),
):
    """Revoke an API key."""
    return revoke_api_key(db, cache, key_id)


@router.delete("/refresh-tokens/expired", response_model=MessageResponse)
def purge_expired_refresh_tokens(
    tokens: TokenLifecycleManager = Depends(get_token_manager),
    _: Identity = Depends(require_exact_role(Role.SUPERADMIN)),
):
    """Delete expired refresh token records."""
    deleted = tokens.purge_expired()
    return MessageResponse(message=f"Deleted {deleted} expired refresh tokens")
