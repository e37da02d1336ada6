"""Profile endpoints for the authenticated user."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from authcore.api.deps import get_current_identity, get_db, require_api_key
from authcore.models.provider_account import OAuthProvider
from authcore.schemas.auth import MessageResponse
from authcore.schemas.user import ProviderAccountResponse, UserResponse
from authcore.services.provider_accounts import (
    list_provider_accounts,
    set_primary_provider,
    unlink_provider_account,
)
from authcore.services.token_codec import Identity
from authcore.services.users import get_user

router = APIRouter(prefix="/profile", tags=["profile"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=UserResponse)
def get_profile(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Get the caller's profile."""
    return get_user(db, identity.id)


@router.get("/providers", response_model=list[ProviderAccountResponse])
def get_providers(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """List linked identity-provider accounts."""
    return list_provider_accounts(db, identity.id)


@router.delete("/providers/{provider}", response_model=MessageResponse)
def unlink_provider(
    provider: OAuthProvider,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Unlink a provider; the last linked provider cannot be removed."""
    unlink_provider_account(db, identity.id, provider)
    db.commit()
    return MessageResponse(message=f"{provider.value} provider unlinked successfully")


@router.put("/providers/{provider}/primary", response_model=MessageResponse)
def make_primary_provider(
    provider: OAuthProvider,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Set which linked provider is primary."""
    set_primary_provider(db, identity.id, provider)
    db.commit()
    return MessageResponse(message=f"{provider.value} is now the primary provider")
