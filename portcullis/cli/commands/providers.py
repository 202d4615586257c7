"""CLI commands for identity-provider clients."""

from __future__ import annotations

import click

from portcullis.cli.output import console, providers_table


@click.group("providers")
def providers_cmd() -> None:
    """Inspect the identity-provider clients this server can use."""


@providers_cmd.command("list")
def providers_list() -> None:
    """List registered identity-provider clients and their capabilities."""
    from portcullis.core.registry import get_registry

    items = []
    for provider_type, cls in sorted(get_registry().all().items()):
        meta = cls.metadata
        items.append(
            {
                "type": provider_type,
                "display_name": meta.display_name,
                "category": meta.category.value,
                "category_default": meta.category_default,
                "proxied": meta.proxied,
                "trim_username": meta.trim_username,
                "client": f"{cls.__module__}.{cls.__name__}",
            }
        )
    console.print(providers_table(items))
