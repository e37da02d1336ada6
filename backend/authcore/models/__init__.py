"""SQLAlchemy models package."""
from authcore.models.user import User
from authcore.models.auth import RefreshToken
from authcore.models.provider_account import OAuthProvider, ProviderAccount
from authcore.models.api_key import ApiKey

__all__ = [
    "User",
    "RefreshToken",
    "OAuthProvider",
    "ProviderAccount",
    "ApiKey",
]
