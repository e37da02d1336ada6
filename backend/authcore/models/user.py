"""User model."""
from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import relationship

from authcore.database import Base, utcnow
from authcore.roles import Role


class User(Base):
    """Local user account, created on first provider login."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    avatar = Column(Text)
    role = Column(
        Enum(Role, name="user_role", native_enum=False, values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
        default=Role.USER,
    )
    # Points at a row in provider_accounts owned by this user; kept in sync by
    # the provider linking service rather than a circular foreign key.
    primary_provider_account_id = Column(Integer)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login_at = Column(DateTime)

    # Relationships
    provider_accounts = relationship(
        "ProviderAccount",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="ProviderAccount.id",
    )
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
