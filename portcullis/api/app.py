"""FastAPI application factory with lifespan management."""

from __future__ import annotations

import secrets
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import func, select

from portcullis.api.routers import auth as auth_router
from portcullis.api.routers import oauth as oauth_router
from portcullis.api.routers import webhook as webhook_router
from portcullis.core.auth import hash_password
from portcullis.core.config import Settings, get_settings
from portcullis.core.crypto import encrypt, generate_signing_certificate
from portcullis.core.database import close_engine, get_engine, get_session_factory
from portcullis.core.errors import SigninError
from portcullis.core.limiter import limiter
from portcullis.core.logging import configure_logging, get_logger
from portcullis.core.registry import get_registry
from portcullis.signin.captcha import CaptchaVerifier
from portcullis.signin.recorder import SessionRecorder
from portcullis.signin.webhook import ScanEventStore

logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    configure_logging()
    settings = get_settings()
    logger.info("Starting Portcullis", debug=settings.app_debug)

    # Warm up DB connection pool
    get_engine()

    registry = get_registry()
    logger.info("Identity providers ready", types=registry.types())

    await _bootstrap(settings)
    app.state.recorder.start()

    yield

    await app.state.recorder.stop()
    await close_engine()
    logger.info("Portcullis stopped")


async def _bootstrap(settings: Settings) -> None:
    """Create the built-in organization, application and admin on an empty store."""
    from portcullis.models.application import Application
    from portcullis.models.organization import Organization
    from portcullis.models.user import User

    factory = get_session_factory()
    async with factory() as session:
        count = (await session.execute(select(func.count()).select_from(Organization))).scalar_one()
        if count:
            return
        session.add(Organization(name=settings.admin_organization, display_name="Built-in Organization"))
        saml_cert, saml_key = generate_signing_certificate(settings.admin_application)
        session.add(
            Application(
                name=settings.admin_application,
                organization=settings.admin_organization,
                display_name="Built-in Application",
                client_id=secrets.token_hex(10),
                client_secret=secrets.token_hex(20),
                saml_certificate=saml_cert,
                saml_private_key=encrypt(saml_key),
                grant_types=["authorization_code", "token", "id_token", "refresh_token"],
                redirect_uris=[f"{settings.origin}/callback"],
            )
        )
        session.add(
            User(
                organization=settings.admin_organization,
                name=settings.admin_username,
                display_name="Admin",
                password_hash=hash_password(settings.admin_password),
                is_admin=True,
                signup_application=settings.admin_application,
                properties={"no": "1"},
            )
        )
        await session.commit()
        logger.info(
            "Bootstrap admin created",
            organization=settings.admin_organization,
            username=settings.admin_username,
            hint="Change the default password immediately!",
        )


async def signin_error_handler(request: Request, exc: SigninError) -> JSONResponse:
    logger.info("Sign-in request refused", path=request.url.path, kind=exc.kind.value, msg=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Portcullis",
        description="Sign-in orchestration for OAuth, OIDC, SAML and CAS applications",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.recorder = SessionRecorder()
    app.state.webhook_store = ScanEventStore(settings.webhook_event_ttl_seconds)
    app.state.captcha_verifier = CaptchaVerifier()
    app.state.session_factory = None
    app.state.idp_transport = None

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(SigninError, signin_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router.router)
    app.include_router(oauth_router.router)
    app.include_router(webhook_router.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": VERSION}

    return app


app = create_app()
