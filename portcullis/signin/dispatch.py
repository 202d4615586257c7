"""Terminal step: shape an authenticated principal into the requested artifact."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.errors import GrantTypeNotAllowed, InvalidRequest, UnsupportedResponseType
from portcullis.core.logging import get_logger
from portcullis.models.application import Application
from portcullis.models.base import as_utc, utcnow
from portcullis.models.session import BrowserSession
from portcullis.models.user import User
from portcullis.schemas.auth import ProtocolParams
from portcullis.signin import protocols
from portcullis.signin.outcomes import Artifact

logger = get_logger(__name__)

RESPONSE_LOGIN = "login"
RESPONSE_CODE = "code"
RESPONSE_TOKEN = "token"
RESPONSE_ID_TOKEN = "id_token"
RESPONSE_SAML = "saml"
RESPONSE_CAS = "cas"

RESPONSE_TYPES = frozenset(
    {RESPONSE_LOGIN, RESPONSE_CODE, RESPONSE_TOKEN, RESPONSE_ID_TOKEN, RESPONSE_SAML, RESPONSE_CAS}
)


def check_response_type(response_type: str) -> None:
    if response_type not in RESPONSE_TYPES:
        raise UnsupportedResponseType(f"Unknown response type: {response_type}")


class ResponseDispatcher:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def dispatch(
        self,
        application: Application,
        user: User,
        response_type: str,
        params: ProtocolParams,
        session: BrowserSession,
    ) -> Artifact:
        check_response_type(response_type)

        if response_type == RESPONSE_LOGIN:
            artifact = Artifact(RESPONSE_LOGIN, user.id)

        elif response_type == RESPONSE_CODE:
            code = await protocols.issue_code(self.db, application, user, params)
            artifact = Artifact(RESPONSE_CODE, code.code, {"state": params.state})

        elif response_type in (RESPONSE_TOKEN, RESPONSE_ID_TOKEN):
            if response_type not in (application.grant_types or []):
                raise GrantTypeNotAllowed(
                    f"Grant type: {response_type} is not supported in this application"
                )
            token = await protocols.issue_token(
                self.db,
                application,
                user,
                scope=params.scope,
                nonce=params.nonce,
                with_id_token=response_type == RESPONSE_ID_TOKEN,
            )
            expires_in = int((as_utc(token.expires_at) - utcnow()).total_seconds())
            data = token.id_token if response_type == RESPONSE_ID_TOKEN else token.access_token
            artifact = Artifact(
                response_type,
                data,
                {
                    "refreshToken": token.refresh_token,
                    "tokenType": token.token_type,
                    "expiresIn": expires_in,
                },
            )

        elif response_type == RESPONSE_SAML:
            payload, redirect = protocols.build_saml_response(application, user, params)
            artifact = Artifact(RESPONSE_SAML, payload, redirect)

        else:
            if not params.service:
                raise InvalidRequest("Missing service parameter")
            ticket = await protocols.issue_service_ticket(self.db, user, params.service)
            artifact = Artifact(RESPONSE_CAS, ticket.ticket, params.service)

        if response_type == RESPONSE_LOGIN or application.enable_signin_session:
            session.user_id = user.id
            session.remember = params.auto_signin

        logger.info(
            "Sign-in artifact issued",
            application=application.name,
            user=user.key,
            response_type=response_type,
        )
        return artifact
