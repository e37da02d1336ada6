"""Persistence for refresh token records.

Pure storage: these methods flush but never commit and make no authorization
decisions. Transactions are owned by the token lifecycle manager.
"""
from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from authcore.database import utcnow
from authcore.models.auth import RefreshToken


class RefreshTokenStore:
    """Queries over the ``refresh_tokens`` table."""

    def __init__(self, db: Session):
        self.db = db

    def insert(
        self,
        user_id: int,
        token_hash: str,
        family_id: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            family_id=family_id,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent[:255] if user_agent else None,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def find_by_hash(self, token_hash: str, for_update: bool = False) -> RefreshToken | None:
        """Look up a record; ``for_update`` takes a row lock where the database supports it."""
        query = self.db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_for_user(self, record_id: int, user_id: int) -> RefreshToken | None:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.id == record_id, RefreshToken.user_id == user_id)
            .first()
        )

    def mark_used(self, record_id: int) -> bool:
        """Flip an unused record to used. Returns False if it was already used."""
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id, RefreshToken.is_used.is_(False))
            .values(is_used=True, used_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def set_replaced_by(self, record_id: int, replacement_id: int) -> None:
        self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id)
            .values(replaced_by_id=replacement_id)
            .execution_options(synchronize_session="fetch")
        )

    def revoke_family(self, family_id: str) -> int:
        """Revoke every record in a family. Already revoked rows keep their timestamp."""
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def revoke_all_for_user(self, user_id: int) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def list_active_for_user(self, user_id: int, now: datetime | None = None) -> list[RefreshToken]:
        now = now or utcnow()
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.created_at, RefreshToken.id)
            .all()
        )

    def delete_expired_before(self, now: datetime) -> int:
        """Garbage-collect records whose expiry has passed."""
        result = self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
