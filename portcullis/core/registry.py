"""Identity-provider registry: auto-discovers and registers all BaseIdProvider subclasses."""

import importlib
import pkgutil
from pathlib import Path
from typing import TYPE_CHECKING

from portcullis.core.errors import ProviderNotFound
from portcullis.core.logging import get_logger

if TYPE_CHECKING:
    from portcullis.idp.base import BaseIdProvider
    from portcullis.models.provider import Provider

logger = get_logger(__name__)


class IdpRegistry:
    """Registry of identity-provider clients keyed by provider type.

    Usage:
        registry = IdpRegistry()
        registry.discover()
        client_cls = registry.resolve(provider_row)
    """

    def __init__(self) -> None:
        self._clients: dict[str, type["BaseIdProvider"]] = {}
        self._category_defaults: dict[str, type["BaseIdProvider"]] = {}
        self._discovered = False

    def discover(self, package: str = "portcullis.idp") -> None:
        """Scan the idp package and register all concrete BaseIdProvider subclasses."""
        from portcullis.idp.base import BaseIdProvider  # avoid circular import

        idp_path = Path(__file__).parent.parent / "idp"

        for module_info in pkgutil.iter_modules([str(idp_path)]):
            if module_info.name == "base":
                continue

            full_name = f"{package}.{module_info.name}"
            try:
                mod = importlib.import_module(full_name)
            except Exception as exc:
                logger.warning("Failed to import provider module", name=full_name, error=str(exc))
                continue

            for attr_name in dir(mod):
                obj = getattr(mod, attr_name)
                if (
                    isinstance(obj, type)
                    and issubclass(obj, BaseIdProvider)
                    and obj.__module__ == mod.__name__
                    and not getattr(obj, "__abstractmethods__", None)
                ):
                    self.register(obj)

        self._discovered = True
        logger.info("Provider discovery complete", count=len(self._clients))

    def register(self, cls: type["BaseIdProvider"]) -> None:
        meta = cls.metadata
        if meta.type in self._clients and self._clients[meta.type] is not cls:
            logger.warning(
                "Duplicate provider type, skipping",
                type=meta.type,
                existing=self._clients[meta.type].__name__,
                new=cls.__name__,
            )
            return
        self._clients[meta.type] = cls
        if meta.category_default:
            self._category_defaults[meta.category.value] = cls
        logger.debug("Registered provider client", type=meta.type, cls=cls.__name__)

    def get(self, provider_type: str) -> type["BaseIdProvider"] | None:
        return self._clients.get(provider_type)

    def resolve(self, provider: "Provider") -> type["BaseIdProvider"]:
        """Exact type match first, then the default client of the provider's category."""
        cls = self._clients.get(provider.type) or self._category_defaults.get(provider.category)
        if cls is None:
            raise ProviderNotFound(f"The provider type: {provider.type} is not supported")
        return cls

    def all(self) -> dict[str, type["BaseIdProvider"]]:
        return dict(self._clients)

    def types(self) -> list[str]:
        return list(self._clients.keys())

    @property
    def is_discovered(self) -> bool:
        return self._discovered


# Global singleton
_registry: IdpRegistry | None = None


def get_registry() -> IdpRegistry:
    global _registry
    if _registry is None:
        _registry = IdpRegistry()
        _registry.discover()
    return _registry
