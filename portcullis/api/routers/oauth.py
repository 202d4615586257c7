"""OAuth token endpoint and CAS ticket validation."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Form, Response

from portcullis.api.dependencies import DbDep
from portcullis.core.errors import GrantTypeNotAllowed, InvalidGrant
from portcullis.core.logging import get_logger
from portcullis.models.base import as_utc, utcnow
from portcullis.schemas.auth import TokenResponse
from portcullis.signin.protocols import cas_response_xml, exchange_code, validate_service_ticket

logger = get_logger(__name__)

router = APIRouter(tags=["oauth"])


@router.post("/api/login/oauth/access_token", response_model=TokenResponse)
async def access_token(
    db: DbDep,
    grant_type: Annotated[str, Form()],
    client_id: Annotated[str, Form()],
    code: Annotated[str, Form()],
    redirect_uri: Annotated[str, Form()] = "",
    client_secret: Annotated[str, Form()] = "",
    code_verifier: Annotated[str, Form()] = "",
) -> TokenResponse:
    """Redeem an authorization code for tokens."""
    if grant_type != "authorization_code":
        raise GrantTypeNotAllowed(f"Grant type: {grant_type} is not supported")
    token = await exchange_code(
        db,
        client_id=client_id,
        client_secret=client_secret,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
    )
    return TokenResponse(
        access_token=token.access_token,
        refresh_token=token.refresh_token,
        id_token=token.id_token,
        token_type=token.token_type,
        expires_in=max(int((as_utc(token.expires_at) - utcnow()).total_seconds()), 0),
        scope=token.scope,
    )


@router.get("/cas/serviceValidate")
async def service_validate(db: DbDep, ticket: str = "", service: str = "") -> Response:
    try:
        user = await validate_service_ticket(db, ticket, service)
    except InvalidGrant as exc:
        logger.info("CAS ticket rejected", service=service)
        body = cas_response_xml(error=exc)
    else:
        body = cas_response_xml(user=user)
    return Response(content=body, media_type="application/xml")
