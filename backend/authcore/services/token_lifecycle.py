"""Refresh token lifecycle: issuance, rotation with reuse detection, revocation.

Every refresh token is single use. Exchanging one marks its record used and
issues a child in the same family; presenting a used token again means the
token was replayed (a lost response being retried or a stolen token), so the
whole family is revoked and the caller must log in again.

Each public method is one transaction. The rotated record is locked while it
is checked, and ``is_used`` is flipped with a conditional update, so two
concurrent exchanges of the same token cannot both succeed.
"""
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.config import Settings, get_settings
from authcore.database import utcnow
from authcore.errors import (
    AppError,
    InvalidToken,
    StorageError,
    TokenNotFound,
    TokenReuseDetected,
    TokenRevoked,
    Unauthorized,
)
from authcore.models.auth import RefreshToken
from authcore.models.user import User
from authcore.roles import Role
from authcore.services.refresh_tokens import RefreshTokenStore
from authcore.services.token_codec import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    Expired,
    Identity,
    TokenCodec,
    TokenDecodeError,
    hash_token,
    parse_ttl,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


def identity_for(user: User) -> Identity:
    return Identity(id=user.id, email=user.email, role=Role(user.role))


def verify_access_token(codec: TokenCodec, token: str) -> Identity:
    """Verify a bearer token and return the caller's identity."""
    try:
        claims = codec.verify(token)
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise Unauthorized("Invalid token type", error_code="INVALID_TOKEN")
        return Identity.from_claims(claims)
    except Expired as exc:
        raise Unauthorized("Token has expired", error_code="TOKEN_EXPIRED") from exc
    except TokenDecodeError as exc:
        raise Unauthorized("Invalid token", error_code="INVALID_TOKEN") from exc


class TokenLifecycleManager:
    """Issues, rotates and revokes refresh tokens for one database session."""

    def __init__(self, db: Session, codec: TokenCodec | None = None, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.codec = codec or TokenCodec(self.settings.secret_key, self.settings.algorithm)
        self.store = RefreshTokenStore(db)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(f"Token store failure during {operation}")
            raise StorageError() from exc

    def _mint(
        self,
        identity: Identity,
        family_id: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> tuple[TokenPair, RefreshToken]:
        claims = identity.to_claims()
        access_token = self.codec.sign(
            {**claims, "type": ACCESS_TOKEN_TYPE, "jti": str(uuid.uuid4())},
            self.settings.access_token_ttl,
        )
        # jti keeps every refresh token value (and so its hash) unique
        refresh_token = self.codec.sign(
            {**claims, "type": REFRESH_TOKEN_TYPE, "jti": str(uuid.uuid4())},
            self.settings.refresh_token_ttl,
        )
        record = self.store.insert(
            user_id=identity.id,
            token_hash=hash_token(refresh_token),
            family_id=family_id,
            expires_at=utcnow() + parse_ttl(self.settings.refresh_token_ttl),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        expires_in = int(parse_ttl(self.settings.access_token_ttl).total_seconds())
        return TokenPair(access_token, refresh_token, expires_in), record

    def issue(self, user: User, ip_address: str | None = None, user_agent: str | None = None) -> TokenPair:
        """Issue a token pair starting a new family (a new login)."""
        with self._transaction("issue"):
            pair, record = self._mint(identity_for(user), str(uuid.uuid4()), ip_address, user_agent)
            logger.info(f"Issued tokens for user {user.id} (family {record.family_id})")
        return pair

    def rotate(
        self,
        raw_refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Exchange a refresh token for a new pair in the same family."""
        try:
            claims = self.codec.verify(raw_refresh_token)
        except TokenDecodeError as exc:
            raise InvalidToken() from exc
        if claims.get("type") != REFRESH_TOKEN_TYPE:
            raise InvalidToken()

        with self._transaction("rotate"):
            record = self.store.find_by_hash(hash_token(raw_refresh_token), for_update=True)
            if record is None or record.user_id != claims.get("id"):
                raise TokenNotFound()
            if record.revoked_at is not None:
                raise TokenRevoked()
            if record.is_used:
                self._revoke_on_reuse(record)
            if record.expires_at <= utcnow():
                raise InvalidToken()
            # Lost race against a concurrent exchange of the same token
            if not self.store.mark_used(record.id):
                self._revoke_on_reuse(record)

            user = self.db.get(User, record.user_id)
            if user is None:
                raise TokenNotFound()

            pair, replacement = self._mint(identity_for(user), record.family_id, ip_address, user_agent)
            self.store.set_replaced_by(record.id, replacement.id)
            logger.info(f"Rotated refresh token for user {user.id} (family {record.family_id})")
        return pair

    def _revoke_on_reuse(self, record: RefreshToken) -> None:
        family_id, user_id = record.family_id, record.user_id
        revoked = self.store.revoke_family(family_id)
        # The revocation must persist even though the request fails
        self.db.commit()
        logger.warning(
            f"Refresh token reuse detected for user {user_id}; "
            f"revoked family {family_id} ({revoked} tokens)"
        )
        raise TokenReuseDetected()

    def revoke(self, raw_refresh_token: str | None) -> bool:
        """Log out one device by revoking the presented token's family.

        Unknown or missing tokens are a no-op; returns whether anything matched.
        """
        if not raw_refresh_token:
            return False
        with self._transaction("revoke"):
            record = self.store.find_by_hash(hash_token(raw_refresh_token))
            if record is None:
                return False
            self.store.revoke_family(record.family_id)
            logger.info(f"Revoked family {record.family_id} for user {record.user_id}")
        return True

    def revoke_all(self, user_id: int) -> int:
        """Log out every device of a user."""
        with self._transaction("revoke_all"):
            revoked = self.store.revoke_all_for_user(user_id)
        logger.info(f"Revoked all sessions for user {user_id} ({revoked} tokens)")
        return revoked

    def revoke_session(self, user_id: int, session_id: int) -> bool:
        """Revoke one of the caller's sessions; ids they do not own are ignored."""
        with self._transaction("revoke_session"):
            record = self.store.find_for_user(session_id, user_id)
            if record is None:
                return False
            self.store.revoke_family(record.family_id)
        return True

    def list_sessions(self, user_id: int) -> list[RefreshToken]:
        """Non-revoked, unexpired refresh token records of a user."""
        try:
            return self.store.list_active_for_user(user_id)
        except SQLAlchemyError as exc:
            logger.exception("Token store failure during list_sessions")
            raise StorageError() from exc

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete expired records. Safe to run repeatedly."""
        with self._transaction("purge_expired"):
            deleted = self.store.delete_expired_before(now or utcnow())
        logger.info(f"Purged {deleted} expired refresh tokens")
        return deleted
