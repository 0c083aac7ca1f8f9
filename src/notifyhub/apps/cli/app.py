"""Operator CLI for the subscription pipeline."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer

from notifyhub.services.bootstrap import Runtime, build_runtime
from notifyhub.services.errors import NoDataFoundError, NotifyHubError
from notifyhub.services.logging import setup_logging
from notifyhub.services.settings import Settings

app = typer.Typer(help="Manage encrypted change-notification subscriptions.")

_state: dict[str, Any] = {}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
):
    settings = Settings.from_sources(config)
    if log_level:
        settings = settings.with_overrides(log_level=log_level)
    setup_logging(settings.log_level, json_output=settings.log_json)
    _state["settings"] = settings


def _settings() -> Settings:
    return _state.get("settings") or Settings.from_sources()


def _echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _run(action: Callable[[Runtime], Awaitable[Any]]) -> Any:
    runtime = build_runtime(_settings())

    async def _main() -> Any:
        try:
            return await action(runtime)
        finally:
            await runtime.aclose()

    try:
        return asyncio.run(_main())
    except NoDataFoundError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    except NotifyHubError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        # idempotent; covers failures before the loop ran
        runtime.close()


@app.command("activate")
def cmd_activate(
    notification_url: Optional[str] = typer.Option(None, "--url", help="Public URL of the notifications endpoint."),
):
    """Create a push subscription for the configured resource."""

    async def action(rt: Runtime):
        url = notification_url or rt.settings.notification_url
        if not url:
            raise typer.BadParameter("a notification URL is required (--url or notification_url setting)")
        await rt.manager.activate(rt.resource.subscription_resource, url)
        return rt.manager.status()

    _echo(_run(action))


@app.command("renew")
def cmd_renew(
    reactivate: bool = typer.Option(True, "--reactivate/--no-reactivate", help="Re-create the subscription when renewal fails."),
):
    """Extend the active subscription."""

    async def action(rt: Runtime):
        if reactivate:
            await rt.manager.renew_or_reactivate()
        else:
            await rt.manager.renew()
        return rt.manager.status()

    _echo(_run(action))


@app.command("check")
def cmd_check():
    """Ask the remote service whether the stored subscription still exists."""

    async def action(rt: Runtime):
        return {"exists": await rt.manager.check_exists()}

    _echo(_run(action))


@app.command("list")
def cmd_list():
    """List subscriptions known to the remote service."""

    async def action(rt: Runtime):
        return await rt.manager.list_remote()

    _echo(_run(action))


@app.command("deactivate")
def cmd_deactivate():
    """Delete the subscription remotely (best effort) and clear local state."""

    async def action(rt: Runtime):
        return {"remoteDeleted": await rt.manager.deactivate()}

    _echo(_run(action))


@app.command("status")
def cmd_status():
    """Show the persisted subscription and poll cursor."""

    async def action(rt: Runtime):
        return rt.manager.status()

    _echo(_run(action))


@app.command("poll")
def cmd_poll(
    manual: bool = typer.Option(False, "--manual", help="Fetch one item ignoring the cursor, fail when empty."),
):
    """Run one delta poll cycle and print the records."""

    async def action(rt: Runtime):
        records = await rt.poller.poll(manual=manual)
        return [r.as_dict() for r in records]

    _echo(_run(action))


@app.command("serve")
def cmd_serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8787, "--port"),
):
    """Run the notifications endpoint with the renewal/poll supervisor."""
    import uvicorn

    from notifyhub.apps.api.server import create_app

    uvicorn.run(create_app(settings=_settings()), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
