"""Tests for the identity-provider registry and the client contract."""

import pytest

from portcullis.core.errors import IdentityProviderError, ProviderNotFound
from portcullis.core.registry import IdpRegistry
from portcullis.idp.base import BaseIdProvider, IdpToken
from portcullis.idp.oauth import GenericOAuthProvider, GitHubProvider
from portcullis.idp.saml import SamlIdProvider
from portcullis.models.provider import Provider


def _registry() -> IdpRegistry:
    reg = IdpRegistry()
    reg.discover()
    return reg


def test_registry_discovers_clients():
    reg = _registry()
    types = reg.types()

    assert "Custom" in types
    assert "GitHub" in types
    assert "Google" in types
    assert "SAML" in types
    assert reg.is_discovered


def test_resolve_exact_type():
    reg = _registry()
    assert reg.resolve(Provider(name="gh", category="OAuth", type="GitHub")) is GitHubProvider


def test_resolve_falls_back_to_category_default():
    reg = _registry()
    assert reg.resolve(Provider(name="x", category="OAuth", type="Keycloak")) is GenericOAuthProvider
    assert reg.resolve(Provider(name="y", category="SAML", type="Okta")) is SamlIdProvider


def test_resolve_unknown_category_raises():
    reg = _registry()
    with pytest.raises(ProviderNotFound):
        reg.resolve(Provider(name="w", category="Web3", type="MetaMask"))


def test_get_unknown_returns_none():
    assert _registry().get("does_not_exist") is None


def test_client_metadata_fields():
    for provider_type, cls in _registry().all().items():
        meta = cls.metadata
        assert meta.type == provider_type
        assert isinstance(meta.display_name, str) and meta.display_name
        assert isinstance(meta.proxied, bool)
        assert isinstance(meta.trim_username, bool)


def test_concrete_client_without_metadata_raises():
    with pytest.raises(TypeError, match="metadata"):
        class BadProvider(BaseIdProvider):
            async def exchange_code(self, code):
                return IdpToken(access_token="x")

            async def fetch_user_info(self, token):
                return None


def test_token_response_error_raises():
    with pytest.raises(IdentityProviderError, match="invalid_grant"):
        IdpToken.from_response({"error": "invalid_grant", "error_description": "bad code"})


def test_token_validity():
    assert IdpToken.from_response({"access_token": "abc", "expires_in": 60}).valid
    assert not IdpToken.from_response({"access_token": ""}).valid


def test_abstract_intermediate_client_needs_no_metadata():
    from abc import abstractmethod

    class SignedPayloadProvider(BaseIdProvider):
        @abstractmethod
        async def parse_payload(self, raw):
            ...

    assert not hasattr(SignedPayloadProvider, "metadata")


def test_application_module_imports():
    import importlib

    module = importlib.import_module("portcullis.api.app")
    assert module.app.title == "Portcullis"
