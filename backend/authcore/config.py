"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math
import re

from pydantic import field_validator
from pydantic_settings import BaseSettings

TTL_PATTERN = re.compile(r"^(\d+)([smhdw])$")
MIN_SECRET_LENGTH = 32
MIN_SECRET_ENTROPY_BITS = 100
PLACEHOLDER_MARKERS = ("changeme", "change-me", "secret-key", "your-secret", "password")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "authcore"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Database
    database_url: str = "sqlite:///./authcore.db"

    # Auth
    secret_key: str
    algorithm: str = "HS256"
    access_token_ttl: str = "15m"
    refresh_token_ttl: str = "7d"

    # Role assignment on first login
    superadmin_email: str | None = None
    admin_emails: str = ""

    # API keys
    api_key_required: bool = True
    api_key_cache_ttl_seconds: int = 3600

    # Redis, shared API key cache across workers (optional)
    redis_url: str | None = None
    redis_key_prefix: str = "authcore"

    class Config:
        env_file = ".env"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_emails_list(self) -> list[str]:
        return [email.strip().lower() for email in self.admin_emails.split(",") if email.strip()]

    @field_validator("access_token_ttl", "refresh_token_ttl")
    @classmethod
    def validate_ttl(cls, value: str) -> str:
        """TTLs are a magnitude plus one of s, m, h, d, w."""
        if not TTL_PATTERN.match(value):
            raise ValueError(f"Invalid token TTL {value!r}; expected e.g. '15m' or '7d'.")
        return value

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str) -> str:
        """Refuse to start with a signing key that could be guessed."""
        if not value:
            raise ValueError("SECRET_KEY is required to sign tokens.")
        if len(value) < MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY is too short; use at least {MIN_SECRET_LENGTH} characters.")
        if any(marker in value.lower() for marker in PLACEHOLDER_MARKERS):
            raise ValueError("SECRET_KEY looks like a placeholder; generate a random one.")
        if estimate_entropy_bits(value) < MIN_SECRET_ENTROPY_BITS:
            raise ValueError("SECRET_KEY entropy is too low; generate it with a cryptographic RNG.")
        return value


def estimate_entropy_bits(value: str) -> float:
    """Shannon entropy of the character distribution times the length."""
    total = len(value)
    per_char = -sum((n / total) * math.log2(n / total) for n in Counter(value).values())
    return per_char * total


@lru_cache
def get_settings() -> Settings:
    return Settings()
