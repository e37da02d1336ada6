"""API key model."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from authcore.database import Base, utcnow


class ApiKey(Base):
    """Shared secret required from standard clients on non-auth routes."""

    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    key_prefix = Column(String(12), nullable=False)  # Shown in listings to identify a key
    key_hash = Column(String(60), nullable=False)  # bcrypt
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    revoked_at = Column(DateTime)
