"""OAuth provider accounts linked to local users."""
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from authcore.database import Base, utcnow


class OAuthProvider(str, Enum):
    """Supported identity providers."""

    GOOGLE = "google"
    APPLE = "apple"


class ProviderAccount(Base):
    """An external identity linked to a user. A user links each provider at most once."""

    __tablename__ = "provider_accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_provider_account"),
        UniqueConstraint("user_id", "provider", name="uq_user_provider"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    provider_id = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)  # May differ from users.email
    name = Column(String(255))
    avatar = Column(Text)
    linked_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="provider_accounts")
