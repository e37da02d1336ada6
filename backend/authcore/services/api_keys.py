"""API keys and the cache used to validate them.

The cache is an explicit service (one per application, kept on ``app.state``)
rather than module state. It reloads from the database when stale, once more
on a miss, and is invalidated whenever a key is created or revoked.

With ``REDIS_URL`` set the cached hashes live in one Redis hash shared by all
workers, so an invalidation reaches every process. Without Redis each process
keeps its own copy. Either way a key that matches is re-checked against the
database before it is accepted, so a revocation applies immediately.
"""
from dataclasses import asdict, dataclass
import json
import logging
import secrets
import threading
import time

import bcrypt
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from authcore.config import Settings
from authcore.database import utcnow
from authcore.errors import Conflict, NotFound
from authcore.models.api_key import ApiKey

logger = logging.getLogger(__name__)

KEY_PREFIX = "ak_"
# Hash field marking a completed load, so an empty key set is not "stale"
_LOADED_FIELD = "loaded"


@dataclass(frozen=True)
class CachedApiKey:
    id: int
    name: str
    key_hash: str


def _active_keys(db: Session) -> list[CachedApiKey]:
    rows = db.query(ApiKey).filter(ApiKey.revoked_at.is_(None)).all()
    return [CachedApiKey(id=row.id, name=row.name, key_hash=row.key_hash) for row in rows]


def _is_active(db: Session, key_id: int) -> bool:
    return db.query(ApiKey.id).filter(ApiKey.id == key_id, ApiKey.revoked_at.is_(None)).first() is not None


def _match(keys: list[CachedApiKey], provided_key: str) -> CachedApiKey | None:
    encoded = provided_key.encode("utf-8")
    for key in keys:
        if bcrypt.checkpw(encoded, key.key_hash.encode("utf-8")):
            return key
    return None


class ApiKeyCache:
    """Active API key hashes, refreshed on expiry, on miss and on write."""

    def __init__(
        self,
        ttl_seconds: int = 3600,
        redis_client: Redis | None = None,
        cache_key: str = "authcore:api_keys",
    ):
        self.ttl_seconds = ttl_seconds
        self.redis = redis_client
        self.cache_key = cache_key
        self._keys: list[CachedApiKey] = []
        self._loaded_at: float | None = None
        self._lock = threading.Lock()

    @property
    def is_stale(self) -> bool:
        if self.redis is not None:
            return not self.redis.exists(self.cache_key)
        return self._loaded_at is None or time.monotonic() - self._loaded_at > self.ttl_seconds

    def _store(self, keys: list[CachedApiKey]) -> None:
        if self.redis is not None:
            mapping = {str(key.id): json.dumps(asdict(key)) for key in keys}
            mapping[_LOADED_FIELD] = "1"
            pipe = self.redis.pipeline()
            pipe.delete(self.cache_key)
            pipe.hset(self.cache_key, mapping=mapping)
            pipe.expire(self.cache_key, self.ttl_seconds)
            pipe.execute()
            return
        with self._lock:
            self._keys = keys
            self._loaded_at = time.monotonic()

    def _load(self) -> list[CachedApiKey]:
        if self.redis is not None:
            entries = self.redis.hgetall(self.cache_key)
            return [CachedApiKey(**json.loads(value)) for field, value in entries.items() if field != _LOADED_FIELD]
        with self._lock:
            return list(self._keys)

    def refresh(self, db: Session) -> int:
        """Reload active keys from the database."""
        keys = _active_keys(db)
        self._store(keys)
        logger.info(f"Refreshed API key cache with {len(keys)} active keys")
        return len(keys)

    def invalidate(self) -> None:
        if self.redis is not None:
            try:
                self.redis.delete(self.cache_key)
            except RedisError:
                # Matches are still re-checked against the database
                logger.exception("Failed to invalidate the shared API key cache")
            return
        with self._lock:
            self._keys = []
            self._loaded_at = None

    def _lookup(self, db: Session, provided_key: str) -> CachedApiKey | None:
        refreshed = False
        if self.is_stale:
            self.refresh(db)
            refreshed = True

        key = _match(self._load(), provided_key)
        if key is None and not refreshed:
            # The key may have been created by another process since the last load
            self.refresh(db)
            key = _match(self._load(), provided_key)
        return key

    def validate(self, db: Session, provided_key: str) -> bool:
        """True if ``provided_key`` matches an active key."""
        if not provided_key or not provided_key.startswith(KEY_PREFIX):
            return False

        try:
            key = self._lookup(db, provided_key)
        except RedisError:
            logger.exception("API key cache unavailable; validating against the database")
            key = _match(_active_keys(db), provided_key)

        if key is None:
            return False
        if not _is_active(db, key.id):
            logger.info(f"Rejected revoked API key {key.name!r} still present in the cache")
            self.invalidate()
            return False
        logger.debug(f"Valid API key presented: {key.name}")
        return True


def build_api_key_cache(settings: Settings) -> ApiKeyCache:
    """Cache for an application: Redis-backed when ``REDIS_URL`` is set."""
    client = None
    if settings.redis_url:
        client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
    return ApiKeyCache(
        settings.api_key_cache_ttl_seconds,
        redis_client=client,
        cache_key=f"{settings.redis_key_prefix}:api_keys",
    )


def generate_api_key() -> str:
    return KEY_PREFIX + secrets.token_urlsafe(32)


def create_api_key(db: Session, cache: ApiKeyCache, name: str, created_by_id: int | None = None) -> tuple[ApiKey, str]:
    """Create a key and return it with its raw value, which is never stored."""
    if db.query(ApiKey).filter(ApiKey.name == name).first():
        raise Conflict(f"An API key named {name!r} already exists")

    raw_key = generate_api_key()
    api_key = ApiKey(
        name=name,
        key_prefix=raw_key[:12],
        key_hash=bcrypt.hashpw(raw_key.encode("utf-8"), bcrypt.gensalt()).decode("utf-8"),
        created_by_id=created_by_id,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    cache.invalidate()
    logger.info(f"API key {name!r} created by user {created_by_id}")
    return api_key, raw_key


def list_api_keys(db: Session) -> list[ApiKey]:
    return db.query(ApiKey).order_by(ApiKey.created_at.desc(), ApiKey.id.desc()).all()


def revoke_api_key(db: Session, cache: ApiKeyCache, key_id: int) -> ApiKey:
    api_key = db.get(ApiKey, key_id)
    if api_key is None:
        raise NotFound("API key not found")
    if api_key.revoked_at is None:
        api_key.revoked_at = utcnow()
        db.commit()
        logger.info(f"API key {api_key.name!r} revoked")
    cache.invalidate()
    return api_key
