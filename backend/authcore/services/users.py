"""User resolution on provider login and administrative user management."""
from dataclasses import dataclass
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from authcore.config import Settings, get_settings
from authcore.database import utcnow
from authcore.errors import BadRequest, Forbidden, NotFound
from authcore.models.provider_account import OAuthProvider
from authcore.models.user import User
from authcore.roles import Role, at_least, exactly
from authcore.services.provider_accounts import get_provider_account, link_provider_account
from authcore.services.token_codec import Identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
    """A verified identity produced by a provider handshake."""

    provider: OAuthProvider
    provider_id: str
    email: str
    name: str | None = None
    avatar: str | None = None


def role_for_email(email: str, settings: Settings) -> Role:
    """Role an email is entitled to from configuration."""
    normalized = email.lower()
    if settings.superadmin_email and settings.superadmin_email.lower() == normalized:
        return Role.SUPERADMIN
    if normalized in settings.admin_emails_list:
        return Role.ADMIN
    return Role.USER


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email.lower()).first()


def login_with_provider(db: Session, profile: ProviderProfile, settings: Settings | None = None) -> User:
    """Resolve or create the local user for a verified provider identity.

    Lookup order is the linked provider account, then the email address (the
    new provider is linked to that user), then a fresh user. Configured admin
    emails are promoted, never demoted. Flushes; the caller commits, usually
    by issuing tokens.
    """
    settings = settings or get_settings()
    email = profile.email.lower()
    entitled_role = role_for_email(email, settings)

    account = get_provider_account(db, profile.provider, profile.provider_id)
    user = account.user if account else get_user_by_email(db, email)

    if user is None:
        user = User(
            email=email,
            name=profile.name,
            avatar=profile.avatar,
            role=entitled_role,
            last_login_at=utcnow(),
        )
        db.add(user)
        db.flush()
        logger.info(f"Created user {user.id} via {OAuthProvider(profile.provider).value} with role {entitled_role.value}")
    else:
        if not at_least(user.role, entitled_role):
            logger.info(f"Promoted user {user.id} from {Role(user.role).value} to {entitled_role.value}")
            user.role = entitled_role
        if not user.name and profile.name:
            user.name = profile.name
        if not user.avatar and profile.avatar:
            user.avatar = profile.avatar
        user.last_login_at = utcnow()

    if account is None:
        link_provider_account(
            db,
            user.id,
            profile.provider,
            profile.provider_id,
            email,
            profile.name,
            profile.avatar,
        )

    db.flush()
    return user


def list_users(db: Session, page: int = 1, limit: int = 20, search: str | None = None) -> tuple[list[User], int]:
    query = db.query(User)
    if search:
        pattern = f"%{search}%"
        query = query.filter(User.email.ilike(pattern) | User.name.ilike(pattern))
    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return users, total


def count_users_by_role(db: Session) -> dict[str, int]:
    counts = {role.value: 0 for role in Role}
    for role, count in db.query(User.role, func.count(User.id)).group_by(User.role).all():
        counts[Role(role).value] = count
    return counts


def change_user_role(db: Session, actor: Identity, target_id: int, role: Role) -> User:
    """Change another user's role.

    Only an actor who is exactly superadmin may grant superadmin, and nobody
    may change their own role.
    """
    if actor.id == target_id:
        raise BadRequest("You cannot change your own role")
    if exactly(role, Role.SUPERADMIN) and not exactly(actor.role, Role.SUPERADMIN):
        raise Forbidden(
            "Only superadmins can promote users to superadmin",
            details={"userRole": actor.role.value, "requiredRole": Role.SUPERADMIN.value},
        )

    user = get_user(db, target_id)
    if exactly(user.role, Role.SUPERADMIN) and not exactly(actor.role, Role.SUPERADMIN):
        raise Forbidden("Only superadmins can change the role of a superadmin")

    old_role = Role(user.role)
    user.role = role
    db.flush()
    logger.info(f"User {target_id} role changed from {old_role.value} to {role.value} by user {actor.id}")
    return user


def delete_user(db: Session, actor: Identity, target_id: int) -> None:
    """Delete a user with their provider accounts and refresh tokens."""
    if actor.id == target_id:
        raise BadRequest("You cannot delete your own account")

    user = get_user(db, target_id)
    if exactly(user.role, Role.SUPERADMIN) and not exactly(actor.role, Role.SUPERADMIN):
        raise Forbidden("Only superadmins can delete other superadmins")

    db.delete(user)
    db.flush()
    logger.info(f"User {target_id} deleted by user {actor.id}")
