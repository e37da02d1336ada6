"""Linking external identity-provider accounts to local users.

A provider identity belongs to exactly one user, a user links each provider at
most once, and a user always keeps at least one linked account with one of
them marked primary. Functions flush but leave the commit to the caller so a
link or unlink lands in the same transaction as the rest of the request.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.errors import BadRequest, Conflict, NotFound
from authcore.models.provider_account import OAuthProvider, ProviderAccount
from authcore.models.user import User

logger = logging.getLogger(__name__)


def _provider_value(provider: OAuthProvider | str) -> str:
    try:
        return OAuthProvider(provider).value
    except ValueError:
        raise BadRequest(f"Unsupported provider: {provider}") from None


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def get_provider_account(db: Session, provider: OAuthProvider | str, provider_id: str) -> ProviderAccount | None:
    """Find the account for a provider identity, whoever owns it."""
    return (
        db.query(ProviderAccount)
        .filter(
            ProviderAccount.provider == _provider_value(provider),
            ProviderAccount.provider_id == provider_id,
        )
        .first()
    )


def get_user_provider_account(db: Session, user_id: int, provider: OAuthProvider | str) -> ProviderAccount | None:
    return (
        db.query(ProviderAccount)
        .filter(
            ProviderAccount.user_id == user_id,
            ProviderAccount.provider == _provider_value(provider),
        )
        .first()
    )


def get_user_id_by_provider(db: Session, provider: OAuthProvider | str, provider_id: str) -> int | None:
    account = get_provider_account(db, provider, provider_id)
    return account.user_id if account else None


def list_provider_accounts(db: Session, user_id: int) -> list[dict]:
    """All accounts linked to a user, flagged with which one is primary."""
    user = _get_user(db, user_id)
    accounts = (
        db.query(ProviderAccount)
        .filter(ProviderAccount.user_id == user_id)
        .order_by(ProviderAccount.id)
        .all()
    )
    return [
        {
            "id": account.id,
            "provider": account.provider,
            "provider_id": account.provider_id,
            "email": account.email,
            "name": account.name,
            "avatar": account.avatar,
            "linked_at": account.linked_at,
            "is_primary": account.id == user.primary_provider_account_id,
        }
        for account in accounts
    ]


def link_provider_account(
    db: Session,
    user_id: int,
    provider: OAuthProvider | str,
    provider_id: str,
    email: str,
    name: str | None = None,
    avatar: str | None = None,
) -> ProviderAccount:
    """Link a provider identity to a user.

    Raises Conflict if the identity is already linked to any user, or the user
    already has an account for this provider.
    """
    provider = _provider_value(provider)
    user = _get_user(db, user_id)

    if get_user_provider_account(db, user_id, provider) is not None:
        raise Conflict(f"User already has {provider} provider linked")
    if get_provider_account(db, provider, provider_id) is not None:
        raise Conflict(f"This {provider} account is already linked to a user")

    account = ProviderAccount(
        user_id=user_id,
        provider=provider,
        provider_id=provider_id,
        email=email.lower(),
        name=name,
        avatar=avatar,
    )
    try:
        with db.begin_nested():
            db.add(account)
            db.flush()
    except IntegrityError:
        # Lost a race against a concurrent link of the same identity
        raise Conflict(f"This {provider} account is already linked to a user") from None

    if user.primary_provider_account_id is None:
        user.primary_provider_account_id = account.id
        db.flush()

    logger.info(f"Linked {provider} account to user {user_id}")
    return account


def unlink_provider_account(db: Session, user_id: int, provider: OAuthProvider | str) -> None:
    """Unlink a provider, moving primary to the oldest remaining account if needed."""
    provider = _provider_value(provider)
    user = _get_user(db, user_id)
    accounts = (
        db.query(ProviderAccount)
        .filter(ProviderAccount.user_id == user_id)
        .order_by(ProviderAccount.id)
        .with_for_update()
        .all()
    )

    target = next((account for account in accounts if account.provider == provider), None)
    if target is None:
        raise NotFound(f"User does not have {provider} provider linked")
    if len(accounts) <= 1:
        raise BadRequest("Cannot unlink the last provider. User must have at least one authentication method.")

    if user.primary_provider_account_id == target.id:
        remaining = next(account for account in accounts if account.id != target.id)
        user.primary_provider_account_id = remaining.id

    db.delete(target)
    db.flush()
    logger.info(f"Unlinked {provider} account from user {user_id}")


def set_primary_provider(db: Session, user_id: int, provider: OAuthProvider | str) -> ProviderAccount:
    """Mark one of the user's linked accounts as primary."""
    user = _get_user(db, user_id)
    account = get_user_provider_account(db, user_id, provider)
    if account is None:
        raise NotFound(f"User does not have {_provider_value(provider)} provider linked")

    user.primary_provider_account_id = account.id
    db.flush()
    return account
