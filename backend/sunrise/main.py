import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sunrise.api import admin, auth, health, invitations, users
from sunrise.config import Settings, get_settings
from sunrise.db.postgres import Base, engine
from sunrise.errors import register_exception_handlers
from sunrise.services.auth import AuthService
from sunrise.services.auth_hooks import InvitationAuthHooks
from sunrise.services.email.client import EmailClient
from sunrise.services.rate_limit import admin_limiter, api_limiter, rate_limit

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    root = logging.getLogger("sunrise")
    if root.handlers:
        return
    root.setLevel(level.upper())
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s"))
    root.addHandler(handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables outside production; production runs the alembic revisions
    if app.state.settings.environment != "production":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    yield

    await engine.dispose()


def create_app(settings: Settings | None = None, auth_service: AuthService | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Authentication, invitation-based user provisioning and administration",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth = auth_service or AuthService(
        settings,
        email_client=EmailClient(settings),
        hooks=InvitationAuthHooks,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    api_v1 = [Depends(rate_limit(api_limiter))]

    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["users"], dependencies=api_v1)
    app.include_router(invitations.router, prefix="/api/v1/invitations", tags=["invitations"], dependencies=api_v1)
    app.include_router(
        admin.router,
        prefix="/api/v1/admin",
        tags=["admin"],
        dependencies=api_v1 + [Depends(rate_limit(admin_limiter))],
    )
    app.include_router(health.router, prefix="/api", tags=["health"])

    if not settings.email_enabled:
        logger.warning("Email is not configured; invitation and account emails will not be delivered")
    if settings.environment == "production" and settings.secret_key.startswith("change-this"):
        logger.warning("SECRET_KEY is still the default value")

    return app


app = create_app()
