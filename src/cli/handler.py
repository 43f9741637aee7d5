from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import click

from common.config import Settings
from common.errors import ConfigurationError, SyncError
from sync.engine import SyncEngine, build_engine


def _read_data(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as exc:
        raise click.ClickException(f"Data file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Data file is not valid JSON: {path}: {exc}") from exc


def _write_data(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _engine(ctx: click.Context) -> SyncEngine:
    """Build and initialize the engine once per invocation."""
    engine: Optional[SyncEngine] = ctx.obj.get("engine")
    if engine is None:
        try:
            settings = Settings.from_env()
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        engine = build_engine(settings)
        engine.initialize()
        ctx.obj["engine"] = engine
    return engine


def _require_ready(engine: SyncEngine) -> None:
    if not engine.initialized:
        raise click.ClickException(f"Google Drive sync unavailable: {engine.init_error or 'not initialized'}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Sync the subscription tracker data file with Google Drive."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    ctx.ensure_object(dict)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show session and sync status."""
    st = _engine(ctx).status()
    click.echo(f"initialized:    {st.initialized}")
    click.echo(f"authenticated:  {st.authenticated}")
    click.echo(f"last sync:      {st.last_sync_time.isoformat() if st.last_sync_time else 'never'}")
    if st.init_error:
        click.echo(f"init error:     {st.init_error}")


@main.command()
@click.pass_context
def login(ctx: click.Context) -> None:
    """Authorize access to the Drive app-data folder."""
    engine = _engine(ctx)
    _require_ready(engine)
    try:
        engine.login()
    except SyncError as e:
        raise click.ClickException(f"Login failed: {e}") from e
    click.echo("Logged in.")


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Revoke the stored token and forget the session."""
    engine = _engine(ctx)
    try:
        revoked = engine.logout()
    except SyncError as e:
        raise click.ClickException(f"Logout failed: {e}") from e
    click.echo("Logged out." if revoked else "Not logged in.")


@main.command()
@click.argument("data_file", type=click.Path(path_type=Path, dir_okay=False))
@click.pass_context
def push(ctx: click.Context, data_file: Path) -> None:
    """Upload DATA_FILE to Drive."""
    engine = _engine(ctx)
    data = _read_data(data_file)
    try:
        file_id = engine.save(data)
    except SyncError as e:
        raise click.ClickException(f"Upload failed: {e}") from e
    click.echo(f"Uploaded ({file_id}).")


@main.command()
@click.argument("data_file", type=click.Path(path_type=Path, dir_okay=False))
@click.pass_context
def pull(ctx: click.Context, data_file: Path) -> None:
    """Download the Drive copy into DATA_FILE."""
    engine = _engine(ctx)
    try:
        data = engine.pull()
    except SyncError as e:
        raise click.ClickException(f"Download failed: {e}") from e
    if data is None:
        click.echo("No data on Drive yet.")
        return
    _write_data(data_file, data)
    click.echo(f"Downloaded to {data_file}.")


@main.command()
@click.argument("data_file", type=click.Path(path_type=Path, dir_okay=False))
@click.pass_context
def reconcile(ctx: click.Context, data_file: Path) -> None:
    """Replace DATA_FILE with the Drive copy if Drive is newer."""
    engine = _engine(ctx)
    restored = engine.reconcile(lambda data: _write_data(data_file, data))
    click.echo(f"Restored newer data to {data_file}." if restored else "Local data is up to date.")


__all__ = ["main"]
