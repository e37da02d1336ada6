"""User endpoints where users act on their own data and staff on anyone's."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from authcore.api.deps import get_db, require_api_key, require_self_or_admin
from authcore.schemas.user import ProviderAccountResponse, UserResponse
from authcore.services.provider_accounts import list_provider_accounts
from authcore.services.users import get_user

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_api_key)])


@router.get("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_self_or_admin())])
def read_user(user_id: int, db: Session = Depends(get_db)):
    """Get a user."""
    return get_user(db, user_id)


@router.get(
    "/{user_id}/providers",
    response_model=list[ProviderAccountResponse],
    dependencies=[Depends(require_self_or_admin())],
)
def read_user_providers(user_id: int, db: Session = Depends(get_db)):
    """List a user's linked provider accounts."""
    return list_provider_accounts(db, user_id)
