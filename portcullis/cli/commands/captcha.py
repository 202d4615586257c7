"""CLI commands for captcha state."""

from __future__ import annotations

import click

from portcullis.cli.output import captcha_status_text, console


@click.group("captcha")
def captcha_cmd() -> None:
    """Captcha gate inspection."""


@captcha_cmd.command("status")
@click.option("--organization", required=True, help="Organization name")
@click.option("--username", required=True, help="Username, email or phone")
@click.pass_context
def captcha_status(ctx: click.Context, organization: str, username: str) -> None:
    """Show whether a user must solve a captcha on the next sign-in."""
    import httpx

    api_url: str = ctx.obj["api_url"]
    try:
        r = httpx.get(
            f"{api_url}/api/get-captcha-status",
            params={"organization": organization, "username": username},
            timeout=10,
        )
        r.raise_for_status()
        console.print(captcha_status_text(organization, username, r.json()["enabled"]))
    except httpx.ConnectError:
        console.print(
            f"[red]Cannot connect to API at {api_url}.[/red] "
            "Is the server running? (portcullis serve)"
        )
        raise SystemExit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]Error {e.response.status_code}:[/red] {e.response.text}")
        raise SystemExit(1)
