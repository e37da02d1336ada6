"""Authentication API endpoints."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from authcore.api.deps import (
    get_current_identity,
    get_db,
    get_token_manager,
    optional_auth,
)
from authcore.errors import Unauthorized
from authcore.models.user import User
from authcore.schemas.auth import (
    IdentityResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SessionResponse,
    TokenPairResponse,
)
from authcore.services.token_codec import Identity
from authcore.services.token_lifecycle import TokenLifecycleManager

router = APIRouter(prefix="/auth", tags=["auth"])


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


@router.post("/refresh", response_model=TokenPairResponse)
def refresh_tokens(
    body: RefreshRequest,
    request: Request,
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Exchange a refresh token for a new token pair (rotation)."""
    pair = tokens.rotate(
        body.refresh_token,
        ip_address=get_request_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


@router.get("/verify", response_model=IdentityResponse)
def verify(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Return the caller as currently stored; deleted users are rejected."""
    user = db.get(User, identity.id)
    if user is None:
        raise Unauthorized("User not found")
    return IdentityResponse(id=user.id, email=user.email, role=user.role)


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: LogoutRequest | None = None,
    identity: Identity | None = Depends(optional_auth),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Revoke this device's session, or every session with ``logoutAll``.

    Always succeeds: having no session to end is not an error.
    """
    body = body or LogoutRequest()
    if body.logout_all and identity is not None:
        tokens.revoke_all(identity.id)
        return MessageResponse(message="Logged out from all devices successfully")

    tokens.revoke(body.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(
    identity: Identity = Depends(get_current_identity),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """List the caller's active sessions."""
    return tokens.list_sessions(identity.id)


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(
    session_id: int,
    identity: Identity = Depends(get_current_identity),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Revoke one session. Unknown ids and other users' ids are silently ignored."""
    tokens.revoke_session(identity.id, session_id)
    return MessageResponse(message="Session revoked successfully")
