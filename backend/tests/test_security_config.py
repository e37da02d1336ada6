import pytest
from pydantic import ValidationError

from authcore.config import Settings

STRONG_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


def test_missing_secret_key_fails_closed(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "")

    with pytest.raises(ValidationError, match="SECRET_KEY"):
        Settings(_env_file=None)


def test_weak_secret_key_fails_closed(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "changeme-in-production")

    with pytest.raises(ValidationError, match="SECRET_KEY"):
        Settings(_env_file=None)


def test_low_entropy_secret_key_fails_closed(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)

    with pytest.raises(ValidationError, match="entropy"):
        Settings(_env_file=None)


def test_strong_secret_key_passes(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", STRONG_KEY)

    settings = Settings(_env_file=None)

    assert settings.secret_key == STRONG_KEY


@pytest.mark.parametrize("ttl", ["15", "15x", "m15", "1.5h", ""])
def test_malformed_token_ttl_is_a_configuration_error(monkeypatch, ttl):
    monkeypatch.setenv("SECRET_KEY", STRONG_KEY)
    monkeypatch.setenv("ACCESS_TOKEN_TTL", ttl)

    with pytest.raises(ValidationError, match="Invalid token TTL"):
        Settings(_env_file=None)


def test_admin_emails_are_normalized(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", STRONG_KEY)
    monkeypatch.setenv("ADMIN_EMAILS", " Ops@Example.com, ,second@example.com ")

    settings = Settings(_env_file=None)

    assert settings.admin_emails_list == ["ops@example.com", "second@example.com"]
