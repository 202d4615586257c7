"""OAuth 2.0 / OpenID Connect identity providers."""

from __future__ import annotations

from typing import Any

from portcullis.core.errors import IdentityProviderError
from portcullis.core.logging import get_logger
from portcullis.idp.base import BaseIdProvider, IdpToken, ProviderCategory, ProviderMetadata, UserInfo

logger = get_logger(__name__)


class GenericOAuthProvider(BaseIdProvider):
    """Standard authorization-code flow against endpoints stored on the provider row.

    Userinfo is read as OIDC standard claims (``sub``, ``preferred_username``,
    ``name``, ``email``, ``phone_number``, ``picture``).
    """

    metadata = ProviderMetadata(
        type="Custom",
        display_name="Custom OAuth 2.0 / OIDC",
        category=ProviderCategory.OAUTH,
        description="Any OAuth 2.0 provider with a token and a userinfo endpoint.",
        category_default=True,
    )

    @property
    def token_url(self) -> str:
        if not self.provider.token_url:
            raise IdentityProviderError(f"Provider {self.provider.name} has no token URL")
        return self.provider.token_url

    @property
    def userinfo_url(self) -> str:
        if not self.provider.userinfo_url:
            raise IdentityProviderError(f"Provider {self.provider.name} has no userinfo URL")
        return self.provider.userinfo_url

    async def exchange_code(self, code: str) -> IdpToken:
        resp = await self.http.post(
            self.token_url,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.provider.client_id or "",
                "client_secret": self.client_secret,
            },
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        return IdpToken.from_response(resp.json())

    async def fetch_user_info(self, token: IdpToken) -> UserInfo:
        resp = await self.http.get(
            self.userinfo_url,
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Accept": "application/json",
            },
        )
        resp.raise_for_status()
        info = self.parse_user_info(resp.json())
        if not info.id:
            raise IdentityProviderError(f"{self.metadata.type} userinfo has no subject")
        logger.debug("Fetched user info", provider=self.provider.name, subject=info.id)
        return info

    def parse_user_info(self, data: dict[str, Any]) -> UserInfo:
        return UserInfo(
            id=str(data.get("sub", "")),
            username=data.get("preferred_username") or data.get("nickname") or "",
            display_name=data.get("name") or "",
            email=data.get("email") or "",
            phone=data.get("phone_number") or "",
            avatar_url=data.get("picture") or "",
            extra=data,
        )


class GitHubProvider(GenericOAuthProvider):
    metadata = ProviderMetadata(
        type="GitHub",
        display_name="GitHub",
        category=ProviderCategory.OAUTH,
        proxied=True,
    )

    @property
    def token_url(self) -> str:
        return self.provider.token_url or "https://github.com/login/oauth/access_token"

    @property
    def userinfo_url(self) -> str:
        return self.provider.userinfo_url or "https://api.github.com/user"

    def parse_user_info(self, data: dict[str, Any]) -> UserInfo:
        return UserInfo(
            id=str(data.get("id", "")),
            username=data.get("login") or "",
            display_name=data.get("name") or data.get("login") or "",
            email=data.get("email") or "",
            avatar_url=data.get("avatar_url") or "",
            extra=data,
        )


class GoogleProvider(GenericOAuthProvider):
    metadata = ProviderMetadata(
        type="Google",
        display_name="Google",
        category=ProviderCategory.OAUTH,
        proxied=True,
    )

    @property
    def token_url(self) -> str:
        return self.provider.token_url or "https://oauth2.googleapis.com/token"

    @property
    def userinfo_url(self) -> str:
        return self.provider.userinfo_url or "https://openidconnect.googleapis.com/v1/userinfo"

    def parse_user_info(self, data: dict[str, Any]) -> UserInfo:
        info = super().parse_user_info(data)
        if not info.username and info.email:
            info.username = info.email.split("@", 1)[0]
        return info
