from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import replace
from datetime import date

import typer

from adsync.config import ALL_PLATFORMS, Settings
from adsync.errors import AdsyncError, ConfigError
from adsync.runner import Runner, run_one
from adsync.store import Store

app = typer.Typer(no_args_is_help=True)
db_app = typer.Typer(no_args_is_help=True)
app.add_typer(db_app, name="db")

logger = logging.getLogger("adsync")


def _setup_logging() -> None:
    level = (os.getenv("ADSYNC_LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _load_settings(day: str | None) -> Settings:
    try:
        settings = Settings.load()
    except ConfigError as e:
        typer.echo(f"ERROR: {e}")
        raise typer.Exit(code=1) from e
    if day:
        try:
            date.fromisoformat(day)
        except ValueError as e:
            typer.echo("ERROR: --date must be YYYY-MM-DD")
            raise typer.Exit(code=2) from e
        settings = replace(settings, target_date=day)
    return settings


@app.callback()
def main() -> None:
    """Daily ad-platform metrics into SQLite."""
    _setup_logging()


@app.command("run")
def run_cmd(
    platform: str | None = typer.Argument(None, help="naver|meta|meta_adset|google (default: all configured)"),
    day: str | None = typer.Option(None, "--date", help="YYYY-MM-DD. Overrides TARGET_DATE."),
) -> None:
    """
    Fetch one day of metrics.

    With a platform, any failure exits 1. Without one, every configured
    profile and platform runs in turn and the exit code is 1 only if all failed.
    """
    settings = _load_settings(day)

    if platform:
        p = platform.strip().lower()
        if p not in ALL_PLATFORMS:
            typer.echo(f"ERROR: platform must be one of: {'|'.join(ALL_PLATFORMS)}")
            raise typer.Exit(code=2)
        try:
            count = asyncio.run(run_one(settings, p))
        except AdsyncError as e:
            logger.error("%s failed: %s: %s", p, type(e).__name__, e)
            raise typer.Exit(code=1) from e
        except Exception as e:  # noqa: BLE001
            logger.exception("%s failed", p)
            raise typer.Exit(code=1) from e
        typer.echo(f"OK {p}: {count} row(s)")
        return

    summary = asyncio.run(Runner(settings).run_all())
    code = summary.exit_code()
    if code:
        typer.echo(f"ERROR: all {len(summary.results)} job(s) failed for {summary.day}")
        raise typer.Exit(code=code)
    typer.echo(f"OK {summary.day}: {len(summary.succeeded)}/{len(summary.results)} job(s) succeeded")


@db_app.command("init")
def db_init_cmd() -> None:
    settings = _load_settings(None)
    Store(settings.db_path).init(p.table_prefix for p in settings.profiles)
    typer.echo(f"OK db init: {settings.db_path}")


if __name__ == "__main__":
    app()
