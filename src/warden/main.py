from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from redis.asyncio import from_url

from warden.api.dependencies import declared_rate_limits
from warden.api.errors import register_exception_handlers
from warden.api.middleware import RequestContextMiddleware
from warden.api.routes import ROUTERS
from warden.config import Settings, StorageType, get_settings
from warden.core.backends.base import StorageBackend
from warden.core.backends.memory import InMemoryBackend
from warden.core.backends.redis import RedisBackend
from warden.core.enforcer import RateLimitEnforcer
from warden.core.logging import setup_logging
from warden.core.policy import RateLimitPolicy
from warden.core.reporter import ViolationReporter
from warden.core.strategies.fixed_window import FixedWindowStrategy

logger = structlog.get_logger()


def build_backend(settings: Settings) -> StorageBackend:
    if settings.storage_backend == StorageType.MEMORY:
        return InMemoryBackend()
    redis_client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    return RedisBackend(redis_client)


def load_policy(settings: Settings) -> RateLimitPolicy:
    if settings.rate_limits_file is not None:
        return RateLimitPolicy.from_file(settings.rate_limits_file)
    return RateLimitPolicy.default()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifecycle manager.
    Builds the rate limiting core, refuses to start on a policy that does
    not cover every declared route, and closes the store on shutdown.
    """
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_json)

    # 1. Validate configuration before touching infrastructure
    policy = load_policy(settings)
    policy.validate_routes(declared_rate_limits(app))

    # 2. Initialize Core Logic (Dependency Injection)
    injected = app.state.injected_backend
    backend = injected or build_backend(settings)
    app.state.backend = backend
    app.state.principals = dict(settings.api_keys)
    app.state.enforcer = RateLimitEnforcer(
        policy=policy,
        strategy=FixedWindowStrategy(backend),
        reporter=ViolationReporter(enabled=settings.log_violations),
        decay_seconds=settings.decay_seconds,
        failure_mode=settings.store_failure_mode,
    )

    logger.info(
        "warden_started",
        storage=settings.storage_backend.value,
        decay_minutes=settings.decay_minutes,
        failure_mode=settings.store_failure_mode.value,
    )
    yield

    # 3. Cleanup
    if injected is None:
        await backend.close()
    logger.info("warden_stopped")


def create_app(settings: Settings | None = None, backend: StorageBackend | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.injected_backend = backend

    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)
    for router in ROUTERS:
        app.include_router(router)

    return app


app = create_app()
