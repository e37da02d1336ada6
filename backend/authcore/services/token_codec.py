"""Stateless signing and verification of identity tokens (HS256 JWTs)."""
from dataclasses import dataclass
from datetime import timedelta
import hashlib
import time
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from authcore.config import TTL_PATTERN
from authcore.roles import Role, parse_role

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_TTL_UNITS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}


class TokenDecodeError(Exception):
    """Base class for codec verification failures."""


class InvalidSignature(TokenDecodeError):
    """Token was tampered with or signed by another key."""


class Expired(TokenDecodeError):
    """Token is past its expiry."""


class Malformed(TokenDecodeError):
    """Token does not parse into header.payload.signature."""


@dataclass(frozen=True)
class Identity:
    """Claim set identifying the caller, embedded in every token."""

    id: int
    email: str
    role: Role

    def to_claims(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email, "role": self.role.value}

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Identity":
        """Build an identity from verified claims; raises Malformed if incomplete."""
        user_id = claims.get("id")
        email = claims.get("email")
        role = parse_role(claims.get("role"))
        if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(email, str) or role is None:
            raise Malformed("Token is missing identity claims")
        return cls(id=user_id, email=email, role=role)


def parse_ttl(ttl: str) -> timedelta:
    """Convert a TTL such as '15m' or '7d' into a timedelta."""
    match = TTL_PATTERN.match(ttl or "")
    if not match:
        raise ValueError(f"Invalid expiration format: {ttl!r}")
    value, unit = match.groups()
    return timedelta(seconds=int(value) * _TTL_UNITS[unit])


def hash_token(token: str) -> str:
    """Hash a raw token before persisting or looking it up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


class TokenCodec:
    """Signs claim sets into compact tokens and verifies them."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def sign(self, claims: dict[str, Any], ttl: str) -> str:
        """Sign ``claims`` with issued-at and expiry timestamps."""
        lifetime = parse_ttl(ttl)
        issued_at = int(time.time())
        to_encode = dict(claims)
        to_encode.update({"iat": issued_at, "exp": issued_at + int(lifetime.total_seconds())})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """Return the claims of a valid token.

        Raises Malformed, InvalidSignature or Expired.
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise Malformed("Token must have three dot-separated parts")
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise Malformed("Token payload could not be decoded") from exc

        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise Expired("Token has expired") from exc
        except JWTClaimsError as exc:
            raise Malformed(str(exc)) from exc
        except JWTError as exc:
            raise InvalidSignature("Token signature verification failed") from exc

    def decode(self, token: str | None) -> dict[str, Any] | None:
        """Read claims without verifying signature or expiry.

        For best-effort inspection only, never for an authorization decision.
        """
        if not token:
            return None
        try:
            claims = jwt.get_unverified_claims(token)
        except Exception:
            return None
        return claims if isinstance(claims, dict) else None
