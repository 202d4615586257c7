"""Federated identity resolution: turn a provider callback into a UserInfo."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
from cryptography.fernet import InvalidToken

from portcullis.core.config import Settings, get_settings
from portcullis.core.errors import (
    IdentityProviderError,
    InvalidRequest,
    ProviderNotFound,
    StateMismatch,
)
from portcullis.core.logging import get_logger
from portcullis.core.registry import IdpRegistry, get_registry
from portcullis.idp.base import AssertionIdProvider, BaseIdProvider, UserInfo
from portcullis.models.application import Application
from portcullis.models.provider import CATEGORY_OAUTH, CATEGORY_SAML, CATEGORY_WEB3, Provider
from portcullis.signin.attempts import ProviderAttempt

logger = get_logger(__name__)


@dataclass(frozen=True)
class CategoryCapability:
    exchanges_code: bool
    checks_state: bool
    lookup_by_subject: bool


CATEGORY_CAPABILITIES: dict[str, CategoryCapability] = {
    CATEGORY_OAUTH: CategoryCapability(exchanges_code=True, checks_state=True, lookup_by_subject=False),
    CATEGORY_WEB3: CategoryCapability(exchanges_code=True, checks_state=True, lookup_by_subject=False),
    CATEGORY_SAML: CategoryCapability(exchanges_code=False, checks_state=False, lookup_by_subject=True),
}


def capability_for(category: str) -> CategoryCapability:
    capability = CATEGORY_CAPABILITIES.get(category)
    if capability is None:
        raise ProviderNotFound(f"The provider category: {category} cannot be used to sign in")
    return capability


class IdentityResolver:
    def __init__(
        self,
        registry: IdpRegistry | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()
        self.transport = transport

    def check_state(self, application: Application, state: str) -> None:
        if state != self.settings.auth_state and state != application.name:
            raise StateMismatch(f"State mismatch for application {application.name}")

    def _http_client(self, client_cls: type[BaseIdProvider]) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "timeout": self.settings.idp_timeout_seconds,
            "transport": self.transport,
        }
        if client_cls.metadata.proxied and self.settings.idp_proxy_url:
            kwargs["proxy"] = self.settings.idp_proxy_url
        return httpx.AsyncClient(**kwargs)

    async def resolve(
        self, application: Application, provider: Provider, attempt: ProviderAttempt
    ) -> UserInfo:
        capability = capability_for(provider.category)
        if capability.checks_state:
            self.check_state(application, attempt.state)
        client_cls = self.registry.resolve(provider)

        try:
            async with self._http_client(client_cls) as http:
                client = client_cls(provider, redirect_uri=attempt.redirect_uri, http_client=http)
                info = await asyncio.wait_for(
                    self._exchange(client, capability, attempt),
                    timeout=self.settings.idp_timeout_seconds,
                )
        except asyncio.TimeoutError as exc:
            logger.warning("Identity provider timed out", provider=provider.name)
            raise IdentityProviderError(f"Provider {provider.name} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request failed", provider=provider.name, error=str(exc))
            raise IdentityProviderError(str(exc) or f"Provider {provider.name} request failed") from exc
        except (InvalidToken, ValueError, KeyError) as exc:
            raise IdentityProviderError(f"Provider {provider.name} returned invalid data") from exc

        if client_cls.metadata.trim_username:
            info.username = "".join(info.username.split())
        logger.info("Resolved federated identity", provider=provider.name, subject=info.id)
        return info

    async def _exchange(
        self, client: BaseIdProvider, capability: CategoryCapability, attempt: ProviderAttempt
    ) -> UserInfo:
        if capability.exchanges_code:
            if not attempt.code:
                raise InvalidRequest("Missing authorization code")
            token = await client.exchange_code(attempt.code)
            if not token.valid:
                raise IdentityProviderError("Invalid token")
            return await client.fetch_user_info(token)

        if not isinstance(client, AssertionIdProvider):
            raise ProviderNotFound(f"Provider type {client.metadata.type} does not accept assertions")
        if not attempt.saml_response:
            raise InvalidRequest("Missing SAML response")
        return await client.parse_assertion(attempt.saml_response)

    async def saml_login_url(self, provider: Provider, relay_state: str, redirect_uri: str) -> str:
        client_cls = self.registry.resolve(provider)
        async with self._http_client(client_cls) as http:
            client = client_cls(provider, redirect_uri=redirect_uri, http_client=http)
            if not isinstance(client, AssertionIdProvider) or not hasattr(client, "build_authn_request"):
                raise ProviderNotFound(f"The provider: {provider.name} is not a SAML provider")
            return client.build_authn_request(relay_state)
