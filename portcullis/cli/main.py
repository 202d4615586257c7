"""Portcullis CLI entry point: `portcullis` command group."""

from __future__ import annotations

import click

from portcullis.cli.commands.captcha import captcha_cmd
from portcullis.cli.commands.providers import providers_cmd


@click.group()
@click.version_option(package_name="portcullis")
@click.option(
    "--api-url",
    default="http://localhost:8000",
    envvar="PORTCULLIS_API_URL",
    show_default=True,
    help="Base URL of the Portcullis API server",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """Portcullis: sign-in orchestration server.

    \b
    Quick start:
      portcullis serve
      portcullis providers list
      portcullis captcha status --organization built-in --username admin

    API docs: http://localhost:8000/docs
    """
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url.rstrip("/")


cli.add_command(providers_cmd)
cli.add_command(captcha_cmd)


@cli.command("serve")
@click.option("--host", default=None, help="Bind host  [default: APP_HOST]")
@click.option("--port", default=None, type=int, help="Bind port  [default: APP_PORT]")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload (dev mode)")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the Portcullis API server (login, OAuth token, CAS and webhook endpoints)."""
    import uvicorn

    from portcullis.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "portcullis.api.app:app",
        host=host or settings.app_host,
        port=port or settings.app_port,
        reload=reload,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    cli()
