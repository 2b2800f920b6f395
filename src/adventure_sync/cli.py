"""Command-line interface for adventure_sync."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click

from adventure_sync import (
    AlbumPayload,
    AuthenticationError,
    ConfigError,
    PhotoBlob,
    Settings,
    SyncEngine,
    SyncError,
    SyncReport,
    get_config,
)

T = TypeVar("T")

LAST_EMAIL_KEY = "_last_email"


def _load_last_email(cache_path: Path) -> str | None:
    """Load the last used email from the token cache."""
    if not cache_path.exists():
        return None
    try:
        data = json.loads(cache_path.read_text())
        return data.get(LAST_EMAIL_KEY)
    except Exception:
        return None


def _save_last_email(cache_path: Path, email: str) -> None:
    """Save the last used email to the token cache."""
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        data = json.loads(cache_path.read_text()) if cache_path.exists() else {}
        data[LAST_EMAIL_KEY] = email
        cache_path.write_text(json.dumps(data, indent=2))
    except Exception:
        pass  # Non-critical, ignore errors


def get_engine(settings: Settings) -> SyncEngine:
    """Create a SyncEngine for the configured project."""
    return SyncEngine.from_settings(settings)


async def _authenticate(
    engine: SyncEngine, settings: Settings, email: str | None, password: str | None
) -> None:
    """Reuse a cached session, falling back to an interactive sign-in."""
    cache_path = settings.token_cache_path
    resolved_email = email or settings.email or _load_last_email(cache_path)

    if resolved_email and not password and await engine.backend.restore_session(resolved_email):
        return

    if not resolved_email:
        resolved_email = click.prompt("Email")
    password = password or settings.password
    if not password:
        password = click.prompt("Password", hide_input=True)
    await engine.backend.login(resolved_email, password)
    _save_last_email(cache_path, resolved_email)


def _run(
    email: str | None,
    password: str | None,
    action: Callable[[SyncEngine], Awaitable[T]],
) -> T:
    """Build an engine, sign in, run action and shut everything down."""
    settings = get_config()

    async def runner() -> T:
        engine = get_engine(settings)
        try:
            await _authenticate(engine, settings, email, password)
            return await action(engine)
        finally:
            await engine.close()

    return asyncio.run(runner())


def _echo_report(report: SyncReport) -> None:
    if not report.ran:
        message = report.errors[0] if report.errors else "nothing to do"
        click.echo(f"Sync skipped: {message}")
        return
    if report.total_items == 0:
        click.echo("No pending uploads.")
        return
    for error in report.errors:
        click.echo(click.style("✗ ", fg="red") + error, err=True)
    if report.failed_items == 0:
        click.echo(
            click.style(f"Synced {report.synced_items} upload(s) successfully!", fg="green")
        )
    else:
        click.echo(
            f"Synced {report.synced_items}/{report.total_items} upload(s). "
            f"{report.failed_items} failed.",
            err=True,
        )


def _fail(message: str) -> None:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(1)


def credential_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Shared --email/--password options."""
    func = click.option(
        "--password", "-p", envvar="ADVENTURE_SYNC_PASSWORD", help="Account password"
    )(func)
    func = click.option("--email", "-e", envvar="ADVENTURE_SYNC_EMAIL", help="Account email")(
        func
    )
    return func


@click.group()
@click.version_option(package_name="adventure-sync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Adventure Sync - upload albums queued while offline."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command()
@click.option("--email", "-e", prompt=True, help="Account email")
@click.option("--password", "-p", prompt=True, hide_input=True, help="Account password")
def login(email: str, password: str) -> None:
    """Sign in and cache the session."""
    try:
        _run(email, password, lambda engine: asyncio.sleep(0))
        click.echo(click.style("Login successful!", fg="green"))
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except AuthenticationError as e:
        _fail(f"Login failed: {e}")


@main.command()
@click.argument("title")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--description", "-d", help="Album description")
@click.option("--location", "-l", "location_name", help="Location name")
@click.option("--lat", "latitude", type=float, help="Latitude")
@click.option("--lon", "longitude", type=float, help="Longitude")
@click.option("--country", "country_code", help="ISO country code")
@click.option(
    "--caption", "-c", "captions", multiple=True, help="Caption for each file, in order"
)
@click.option("--offline", is_flag=True, help="Only queue; do not sync now")
@credential_options
def queue(
    title: str,
    files: tuple[Path, ...],
    description: str | None,
    location_name: str | None,
    latitude: float | None,
    longitude: float | None,
    country_code: str | None,
    captions: tuple[str, ...],
    offline: bool,
    email: str | None,
    password: str | None,
) -> None:
    """Queue an album with photos for upload.

    TITLE: Album title. FILES: One or more photos, in album order.

    Examples:

        adventure-sync queue "Lisbon" day1.jpg day2.jpg -c "Tram 28" -c "Alfama"

        adventure-sync queue "Alps" *.jpg --country CH --offline
    """
    photos = [
        PhotoBlob.from_path(path, order_index=i, caption=captions[i] if i < len(captions) else None)
        for i, path in enumerate(files)
    ]
    metadata = AlbumPayload(
        title=title,
        description=description,
        location_name=location_name,
        latitude=latitude,
        longitude=longitude,
        country_code=country_code.upper() if country_code else None,
    )

    async def action(engine: SyncEngine) -> tuple[str, SyncReport | None]:
        if offline:
            engine.monitor.set_online(False)
        local_id = await engine.queue_album_upload(metadata, photos)
        await engine.wait_idle()
        return local_id, engine.last_report

    try:
        local_id, report = _run(email, password, action)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except AuthenticationError as e:
        _fail(f"Authentication failed: {e}")
    except SyncError as e:
        _fail(f"Error: {e}")
    else:
        click.echo(click.style("✓ ", fg="green") + f"Queued '{title}' as {local_id}")
        if report is not None:
            _echo_report(report)


@main.command()
@credential_options
def sync(email: str | None, password: str | None) -> None:
    """Upload every pending album now."""
    try:
        report = _run(email, password, lambda engine: engine.sync_pending_uploads())
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except AuthenticationError as e:
        _fail(f"Authentication failed: {e}")
    else:
        _echo_report(report)
        if report.errors:
            sys.exit(1)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable output")
@credential_options
def status(as_json: bool, email: str | None, password: str | None) -> None:
    """Show queued, uploading and failed albums."""

    async def action(engine: SyncEngine) -> tuple[list[dict[str, Any]], int]:
        items = await engine.refresh()
        return [item.to_dict() for item in items], engine.blob_store.count()

    try:
        items, offline_count = _run(email, password, action)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except (AuthenticationError, SyncError) as e:
        _fail(f"Error: {e}")
    else:
        if as_json:
            click.echo(json.dumps({"items": items, "offline_uploads": offline_count}, indent=2))
            return
        if not items:
            click.echo("Upload queue is empty.")
        colors = {"pending": "yellow", "uploading": "blue", "failed": "red"}
        for item in items:
            line = (
                click.style(f"{item['status']:<10}", fg=colors.get(item["status"]))
                + f" {item['id']}  {item['title']}  ({item['photo_count']} photo(s))"
            )
            if item["error_message"]:
                line += f"  [{item['retry_count']}/{item['max_retries']}] {item['error_message']}"
            click.echo(line)
        click.echo(f"\n{offline_count} upload(s) holding files offline.")


@main.command()
@click.argument("upload_id")
@credential_options
def retry(upload_id: str, email: str | None, password: str | None) -> None:
    """Retry a failed upload."""

    async def action(engine: SyncEngine) -> SyncReport | None:
        await engine.retry_upload(upload_id)
        await engine.wait_idle()
        return engine.last_report

    try:
        report = _run(email, password, action)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except SyncError as e:
        _fail(f"Retry failed: {e}")
    else:
        click.echo(click.style(f"Upload {upload_id} queued for retry.", fg="green"))
        if report is not None:
            _echo_report(report)


@main.command()
@click.argument("upload_id")
@credential_options
def cancel(upload_id: str, email: str | None, password: str | None) -> None:
    """Cancel a pending or failed upload and drop its local files."""
    try:
        _run(email, password, lambda engine: engine.cancel_upload(upload_id))
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except SyncError as e:
        _fail(f"Cancel failed: {e}")
    else:
        click.echo(click.style(f"Upload {upload_id} cancelled.", fg="green"))


@main.command()
@credential_options
def watch(email: str | None, password: str | None) -> None:
    """Probe the backend and sync whenever the connection comes back."""

    async def action(engine: SyncEngine) -> None:
        engine.monitor.start()
        click.echo("Watching connectivity. Press Ctrl+C to stop.")
        if await engine.monitor.probe():
            engine.request_sync()
        await asyncio.Event().wait()

    try:
        _run(email, password, action)
    except KeyboardInterrupt:
        click.echo("\nStopped.")
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    except AuthenticationError as e:
        _fail(f"Authentication failed: {e}")


@main.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8765, type=int, help="Port to listen on")
def serve(host: str, port: int) -> None:
    """Run the local sync service."""
    import uvicorn

    uvicorn.run("adventure_sync.server:app", host=host, port=port)


if __name__ == "__main__":
    main()
