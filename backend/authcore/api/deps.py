"""Request dependencies: database, identity and authorization guards.

Guards are FastAPI dependencies. Each resolves to the caller's ``Identity``
or raises ``Unauthorized`` (no usable identity) / ``Forbidden`` (identity
without the privilege), which the error handlers render as the standard
envelope. Role comparisons always go through ``authcore.roles``.
"""
from collections.abc import Iterable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from authcore.config import Settings, get_settings
from authcore.database import get_db
from authcore.errors import BadRequest, Forbidden, Unauthorized
from authcore.roles import Role, at_least, exactly, parse_role, rank
from authcore.services.api_keys import ApiKeyCache, build_api_key_cache
from authcore.services.token_codec import Identity, TokenCodec, extract_bearer_token
from authcore.services.token_lifecycle import TokenLifecycleManager, verify_access_token

__all__ = [
    "get_db",
    "get_token_codec",
    "get_token_manager",
    "get_api_key_cache",
    "resolve_identity",
    "get_current_identity",
    "optional_auth",
    "require_role",
    "require_exact_role",
    "require_any_role",
    "require_self_or_admin",
    "require_api_key",
]


def get_token_codec(settings: Settings = Depends(get_settings)) -> TokenCodec:
    return TokenCodec(settings.secret_key, settings.algorithm)


def get_token_manager(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_settings),
) -> TokenLifecycleManager:
    return TokenLifecycleManager(db, codec=codec, settings=settings)


def get_api_key_cache(request: Request) -> ApiKeyCache:
    cache = getattr(request.app.state, "api_key_cache", None)
    if cache is None:
        cache = request.app.state.api_key_cache = build_api_key_cache(get_settings())
    return cache


def resolve_identity(request: Request, codec: TokenCodec = Depends(get_token_codec)) -> Identity | None:
    """Identity from the bearer token; None when no token was sent.

    A token that is present but invalid is an error, not an anonymous caller.
    """
    authorization = request.headers.get("authorization")
    if not authorization:
        return None
    token = extract_bearer_token(authorization)
    if token is None:
        raise Unauthorized("Missing or invalid authorization header", error_code="INVALID_TOKEN")
    return verify_access_token(codec, token)


def get_current_identity(identity: Identity | None = Depends(resolve_identity)) -> Identity:
    """Require an authenticated caller."""
    if identity is None:
        raise Unauthorized()
    return identity


def optional_auth(request: Request, codec: TokenCodec = Depends(get_token_codec)) -> Identity | None:
    """Identity if a valid token is present; never fails the request."""
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        return None
    try:
        return verify_access_token(codec, token)
    except Unauthorized:
        return None


def require_role(required: Role):
    """Allow callers whose role is ``required`` or higher."""
    required = Role(required)

    def guard(identity: Identity | None = Depends(resolve_identity)) -> Identity:
        if identity is None:
            raise Unauthorized()
        if not at_least(identity.role, required):
            raise Forbidden(
                f"Access denied. Required role: {required.value}",
                details={"userRole": identity.role.value, "requiredRole": required.value},
            )
        return identity

    return guard


def require_exact_role(target: Role):
    """Allow only callers whose role is exactly ``target``; higher ranks do not pass."""
    target = Role(target)

    def guard(identity: Identity | None = Depends(resolve_identity)) -> Identity:
        if identity is None:
            raise Unauthorized()
        if not exactly(identity.role, target):
            raise Forbidden(
                f"Access denied. Required role: {target.value}",
                details={"userRole": identity.role.value, "requiredRole": target.value},
            )
        return identity

    return guard


def require_any_role(allowed: Iterable[Role]):
    """Allow callers whose rank meets or exceeds any listed role."""
    allowed_roles = sorted({Role(role) for role in allowed}, key=rank)
    if not allowed_roles:
        raise ValueError("require_any_role needs at least one role")

    def guard(identity: Identity | None = Depends(resolve_identity)) -> Identity:
        if identity is None:
            raise Unauthorized()
        if not any(at_least(identity.role, role) for role in allowed_roles):
            raise Forbidden(
                f"Access denied. Required roles: {', '.join(role.value for role in allowed_roles)}",
                details={"userRole": identity.role.value, "allowedRoles": [role.value for role in allowed_roles]},
            )
        return identity

    return guard


def require_self_or_admin(param: str = "user_id", allow_admin: bool = True):
    """Allow callers acting on their own resource, or admins acting on anyone's.

    The owning user id is read from the ``param`` path parameter.
    """

    def guard(request: Request, identity: Identity | None = Depends(resolve_identity)) -> Identity:
        if identity is None:
            raise Unauthorized()
        try:
            owner_id = int(request.path_params[param])
        except (KeyError, TypeError, ValueError):
            raise BadRequest(f"Invalid {param}") from None

        if identity.id == owner_id:
            return identity
        if allow_admin and at_least(identity.role, Role.ADMIN):
            return identity
        raise Forbidden("You can only access your own data", details={"userRole": identity.role.value})

    return guard


def require_api_key(
    request: Request,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_settings),
    cache: ApiKeyCache = Depends(get_api_key_cache),
) -> None:
    """Require a valid ``X-API-Key`` from standard clients.

    Admin-or-above callers skip the key. Their role is only *decoded* here to
    avoid the bcrypt comparisons; the route's own guard still verifies the
    token before anything is authorized.
    """
    if not settings.api_key_required:
        return

    claims = codec.decode(extract_bearer_token(request.headers.get("authorization")))
    role = parse_role(claims.get("role")) if claims else None
    if role is not None and at_least(role, Role.ADMIN):
        return

    provided_key = request.headers.get("x-api-key")
    if not provided_key:
        raise Unauthorized(
            "API key is required. Include X-API-Key header in your request.",
            error_code="API_KEY_MISSING",
        )
    if not cache.validate(db, provided_key):
        raise Unauthorized("Invalid or revoked API key.", error_code="API_KEY_INVALID")
