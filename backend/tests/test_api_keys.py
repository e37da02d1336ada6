import fakeredis
import pytest

from authcore.config import get_settings
from authcore.roles import Role
from authcore.services.api_keys import ApiKeyCache, create_api_key, revoke_api_key
from authcore.services.token_codec import TokenCodec

OTHER_SECRET = "fedcba9876543210fedcba9876543210fedcba9876543210fedcba9876543210"


def _bearer(token: str, api_key: str | None = None) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if api_key:
        headers["X-API-Key"] = api_key
    return headers


@pytest.fixture
def gated_app(app, settings):
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"api_key_required": True})
    return app


@pytest.fixture
def cache(gated_app):
    return gated_app.state.api_key_cache


def test_profile_requires_api_key_for_standard_users(gated_app, client, create_user, token_manager):
    pair = token_manager.issue(create_user())

    response = client.get("/api/profile", headers=_bearer(pair.access_token))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "API_KEY_MISSING"


def test_unknown_api_key_is_rejected(gated_app, client, create_user, token_manager):
    pair = token_manager.issue(create_user())

    response = client.get("/api/profile", headers=_bearer(pair.access_token, "ak_not-a-real-key"))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "API_KEY_INVALID"


def test_valid_api_key_is_accepted(db, cache, client, create_user, token_manager):
    user = create_user(email="keyed@example.com")
    pair = token_manager.issue(user)
    _, raw_key = create_api_key(db, cache, "mobile")

    response = client.get("/api/profile", headers=_bearer(pair.access_token, raw_key))

    assert response.status_code == 200
    assert response.json()["email"] == "keyed@example.com"


def test_revoked_api_key_stops_working(db, cache, client, create_user, token_manager):
    pair = token_manager.issue(create_user())
    api_key, raw_key = create_api_key(db, cache, "web")
    assert client.get("/api/profile", headers=_bearer(pair.access_token, raw_key)).status_code == 200

    revoke_api_key(db, cache, api_key.id)

    response = client.get("/api/profile", headers=_bearer(pair.access_token, raw_key))
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "API_KEY_INVALID"


@pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPERADMIN])
def test_staff_skip_the_api_key(gated_app, client, create_user, token_manager, role):
    pair = token_manager.issue(create_user(role=role))

    response = client.get("/api/profile", headers=_bearer(pair.access_token))

    assert response.status_code == 200


def test_forged_staff_token_skips_key_but_fails_verification(gated_app, client):
    forged = TokenCodec(OTHER_SECRET).sign(
        {"id": 1, "email": "mallory@example.com", "role": "superadmin", "type": "access"},
        "15m",
    )

    response = client.get("/api/profile", headers=_bearer(forged))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_TOKEN"


def test_gate_is_disabled_by_configuration(client, create_user, token_manager):
    pair = token_manager.issue(create_user())

    assert client.get("/api/profile", headers=_bearer(pair.access_token)).status_code == 200


def test_cache_rejects_keys_without_prefix(db):
    assert ApiKeyCache().validate(db, "not-prefixed") is False
    assert ApiKeyCache().validate(db, "") is False


def test_cache_refreshes_on_miss(db):
    reader = ApiKeyCache(ttl_seconds=3600)
    reader.refresh(db)
    assert reader.is_stale is False

    # Created through another process's cache; the reader still holds the old list
    _, raw_key = create_api_key(db, ApiKeyCache(), "batch")

    assert reader.validate(db, raw_key) is True


def test_cache_is_invalidated_on_write(db):
    cache = ApiKeyCache()
    cache.refresh(db)

    api_key, raw_key = create_api_key(db, cache, "cli")
    assert cache.is_stale is True
    assert cache.validate(db, raw_key) is True

    revoke_api_key(db, cache, api_key.id)
    assert cache.is_stale is True
    assert cache.validate(db, raw_key) is False


def test_admin_api_key_endpoints(client, create_user, token_manager):
    root = token_manager.issue(create_user(role=Role.SUPERADMIN))
    headers = _bearer(root.access_token)

    created = client.post("/api/admin/api-keys", json={"name": "partner"}, headers=headers)
    assert created.status_code == 201
    body = created.json()
    assert body["key"].startswith("ak_")
    assert body["keyPrefix"] == body["key"][:12]

    duplicate = client.post("/api/admin/api-keys", json={"name": "partner"}, headers=headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    listed = client.get("/api/admin/api-keys", headers=headers).json()
    assert [k["name"] for k in listed] == ["partner"]
    assert "key" not in listed[0]
    assert "keyHash" not in listed[0]

    revoked = client.delete(f"/api/admin/api-keys/{body['id']}", headers=headers)
    assert revoked.status_code == 200
    assert revoked.json()["revokedAt"] is not None

    assert client.delete("/api/admin/api-keys/999", headers=headers).status_code == 404


def test_api_key_name_is_validated(client, create_user, token_manager):
    root = token_manager.issue(create_user(role=Role.SUPERADMIN))

    response = client.post("/api/admin/api-keys", json={"name": ""}, headers=_bearer(root.access_token))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_revocation_reaches_other_workers_without_redis(db):
    worker_a = ApiKeyCache(ttl_seconds=3600)
    worker_b = ApiKeyCache(ttl_seconds=3600)
    api_key, raw_key = create_api_key(db, worker_b, "fleet")
    assert worker_b.validate(db, raw_key) is True

    revoke_api_key(db, worker_a, api_key.id)

    # worker_b still holds the key in memory but must not accept it
    assert worker_b.is_stale is False
    assert worker_b.validate(db, raw_key) is False


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


def _redis_cache(server, **kwargs):
    return ApiKeyCache(redis_client=fakeredis.FakeRedis(server=server, decode_responses=True), **kwargs)


def test_redis_cache_is_shared_between_workers(db, redis_server):
    worker_a = _redis_cache(redis_server)
    worker_b = _redis_cache(redis_server)
    api_key, raw_key = create_api_key(db, worker_a, "shared")
    assert worker_b.validate(db, raw_key) is True
    assert worker_a.is_stale is False

    revoke_api_key(db, worker_a, api_key.id)

    assert worker_b.is_stale is True
    assert worker_b.validate(db, raw_key) is False


def test_redis_cache_remembers_an_empty_key_set(db, redis_server):
    cache = _redis_cache(redis_server, cache_key="test:api_keys")

    assert cache.refresh(db) == 0
    assert cache.is_stale is False
    assert fakeredis.FakeRedis(server=redis_server).ttl("test:api_keys") > 0


def test_unreachable_redis_falls_back_to_database(db, redis_server):
    cache = _redis_cache(redis_server)
    api_key, raw_key = create_api_key(db, ApiKeyCache(), "offline")
    redis_server.connected = False

    assert cache.validate(db, raw_key) is True

    revoke_api_key(db, cache, api_key.id)
    assert cache.validate(db, raw_key) is False
