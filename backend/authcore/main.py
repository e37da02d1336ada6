"""authcore - authentication, token lifecycle and RBAC API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from authcore.api import admin, auth, profile, users
from authcore.api.errors import register_error_handlers
from authcore.config import get_settings
from authcore.services.api_keys import build_api_key_cache

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: create tables and warm the API key cache
    from authcore.database import Base, engine, get_db_context

    # Import all models so they're registered with Base
    from authcore import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    with get_db_context() as db:
        try:
            app.state.api_key_cache.refresh(db)
        except RedisError:
            # Validation falls back to the database until Redis is reachable
            logger.exception("Could not warm the API key cache")

    logger.info(f"{settings.app_name} started ({settings.environment})")
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="OAuth-backed authentication, refresh token rotation and role-based access control",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.api_key_cache = build_api_key_cache(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "app": settings.app_name}

    app.include_router(auth.router, prefix="/api")
    app.include_router(profile.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")
    return app


app = create_app()
