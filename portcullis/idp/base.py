"""Identity-provider client contract.

Every concrete client lives in ``portcullis/idp/*.py`` and is auto-discovered
by the registry. Subclass ``BaseIdProvider`` for code-exchange protocols
(OAuth, OIDC, Web3) or ``AssertionIdProvider`` for signed-assertion
protocols (SAML), and set the ``metadata`` class variable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar

import httpx

from portcullis.core.crypto import decrypt
from portcullis.core.errors import IdentityProviderError
from portcullis.models.provider import Provider


class ProviderCategory(str, Enum):
    OAUTH = "OAuth"
    SAML = "SAML"
    WEB3 = "Web3"


@dataclass
class ProviderMetadata:
    type: str               # Provider.type this client serves (e.g. "GitHub")
    display_name: str
    category: ProviderCategory
    description: str = ""
    proxied: bool = False
    """Route calls through ``settings.idp_proxy_url`` when configured."""
    trim_username: bool = False
    """Strip whitespace from provider usernames before provisioning."""
    category_default: bool = False
    """Serve provider rows of this category whose type has no dedicated client."""


@dataclass
class UserInfo:
    """Protocol-neutral projection of a federated identity. Never persisted as-is."""

    id: str
    username: str = ""
    display_name: str = ""
    email: str = ""
    phone: str = ""
    avatar_url: str = ""
    country_code: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class IdpToken:
    access_token: str
    token_type: str = "Bearer"
    expires_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "IdpToken":
        if "error" in data:
            raise IdentityProviderError(
                f"{data.get('error')}: {data.get('error_description', '')}".strip()
            )
        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        return cls(
            access_token=data.get("access_token", ""),
            token_type=data.get("token_type") or "Bearer",
            expires_at=expires_at,
            raw=data,
        )

    @property
    def valid(self) -> bool:
        if not self.access_token:
            return False
        return self.expires_at is None or self.expires_at > datetime.now(timezone.utc)


class BaseIdProvider(ABC):
    """Abstract base class for code-exchange identity providers."""

    metadata: ClassVar[ProviderMetadata]

    def __init__(
        self,
        provider: Provider,
        *,
        redirect_uri: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.provider = provider
        self.redirect_uri = redirect_uri
        self.http = http_client

    @property
    def client_secret(self) -> str:
        return decrypt(self.provider.client_secret) if self.provider.client_secret else ""

    @abstractmethod
    async def exchange_code(self, code: str) -> IdpToken:
        """Redeem an authorization code at the provider's token endpoint."""
        ...

    @abstractmethod
    async def fetch_user_info(self, token: IdpToken) -> UserInfo:
        ...

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        # ABCMeta fills __abstractmethods__ only after this hook, so look at the
        # class body: intermediate bases declaring abstract methods need no metadata
        declares_abstract = any(
            getattr(value, "__isabstractmethod__", False) for value in vars(cls).values()
        )
        if not declares_abstract:
            if not hasattr(cls, "metadata"):
                raise TypeError(
                    f"Identity provider {cls.__name__} must define a 'metadata' class variable."
                )


class AssertionIdProvider(BaseIdProvider):
    """Base class for providers that post a signed assertion instead of a code."""

    async def exchange_code(self, code: str) -> IdpToken:
        raise IdentityProviderError(
            f"{self.metadata.type} is assertion-based and does not exchange codes"
        )

    async def fetch_user_info(self, token: IdpToken) -> UserInfo:
        raise IdentityProviderError(
            f"{self.metadata.type} is assertion-based and has no userinfo endpoint"
        )

    @abstractmethod
    async def parse_assertion(self, raw: str) -> UserInfo:
        """Validate *raw* (base64 response as posted by the IdP) and project it."""
        ...
