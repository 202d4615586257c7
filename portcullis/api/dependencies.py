"""FastAPI dependency providers."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.config import get_settings
from portcullis.core.database import get_session_factory
from portcullis.core.registry import get_registry
from portcullis.models.base import as_utc, utcnow
from portcullis.models.session import BrowserSession
from portcullis.schemas.auth import ProtocolParams
from portcullis.signin.engine import SigninEngine
from portcullis.signin.webhook import ScanEventStore


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for the duration of a request."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


DbDep = Annotated[AsyncSession, Depends(get_db)]


async def get_browser_session(request: Request, db: DbDep) -> BrowserSession:
    """Load the server-side session behind the cookie, creating one when absent or expired."""
    settings = get_settings()
    session_id = request.cookies.get(settings.session_cookie_name)
    session = await db.get(BrowserSession, session_id) if session_id else None
    if session is not None and session.expires_at and as_utc(session.expires_at) <= utcnow():
        await db.delete(session)
        session = None
    if session is None:
        session = BrowserSession(
            expires_at=utcnow() + timedelta(days=settings.session_max_age_days)
        )
        db.add(session)
        # Stored before any sign-in work runs
        await db.commit()
    return session


def set_session_cookie(response: Response, session: BrowserSession) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        session.id,
        max_age=settings.session_max_age_days * 86400 if session.remember else None,
        httponly=True,
        samesite="lax",
    )


def get_webhook_store(request: Request) -> ScanEventStore:
    return request.app.state.webhook_store


def get_signin_engine(request: Request, db: DbDep) -> SigninEngine:
    state = request.app.state
    return SigninEngine(
        db,
        recorder=state.recorder,
        registry=get_registry(),
        captcha_verifier=state.captcha_verifier,
        session_factory=state.session_factory,
        idp_transport=state.idp_transport,
    )


def get_protocol_params(
    client_id: Annotated[str, Query(alias="clientId")] = "",
    redirect_uri: Annotated[str, Query(alias="redirectUri")] = "",
    scope: str = "",
    state: str = "",
    nonce: str = "",
    code_challenge_method: str = "",
    code_challenge: str = "",
    saml_request: Annotated[str, Query(alias="samlRequest")] = "",
    relay_state: Annotated[str, Query(alias="relayState")] = "",
    service: str = "",
) -> ProtocolParams:
    return ProtocolParams(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        nonce=nonce,
        code_challenge_method=code_challenge_method,
        code_challenge=code_challenge,
        saml_request=saml_request,
        relay_state=relay_state,
        service=service,
    )


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


SessionDep = Annotated[BrowserSession, Depends(get_browser_session)]
EngineDep = Annotated[SigninEngine, Depends(get_signin_engine)]
ParamsDep = Annotated[ProtocolParams, Depends(get_protocol_params)]
