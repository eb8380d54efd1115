from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from adsync.config import DEFAULT_PROFILE, Profile, Settings
from adsync.connectors.base import ConnectorContext
from adsync.errors import ConfigError, StoreError
from adsync.registry import build_connector
from adsync.store import Store
from adsync.util import resolve_target_date

logger = logging.getLogger(__name__)


@dataclass
class PlatformResult:
    profile: str
    platform: str
    table: str
    date_column: str
    success: bool = False
    count: int = 0
    error: str | None = None

    @property
    def label(self) -> str:
        return self.platform if self.profile == DEFAULT_PROFILE else f"{self.profile}:{self.platform}"


@dataclass
class RunSummary:
    day: str
    results: list[PlatformResult]

    @property
    def succeeded(self) -> list[PlatformResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[PlatformResult]:
        return [r for r in self.results if not r.success]

    def exit_code(self) -> int:
        # Partial success is still a successful run; only a total wipe-out fails it.
        if self.results and not self.succeeded:
            return 1
        return 0


class Runner:
    """Runs platform jobs for one target date, sequentially."""

    def __init__(
        self,
        settings: Settings,
        store: Store | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.store = store or Store(settings.db_path)
        self.transport = transport
        self.sleep = sleep

    def target_date(self) -> str:
        return resolve_target_date(self.settings.target_date, self.settings.timezone)

    def _connector(self, profile: Profile, platform: str):
        ctx = ConnectorContext(
            platform=platform,
            settings=self.settings,
            profile=profile,
            transport=self.transport,
            sleep=self.sleep,
        )
        return build_connector(platform, ctx, self.store)

    async def _run(self, connector, day: str) -> int:
        ok, err = await connector.health_check()
        if not ok:
            raise ConfigError(err or f"{connector.ctx.platform} is not configured")
        logger.info("[%s] fetching %s", connector.ctx.label, day)
        return await connector.fetch_daily(day)

    def platforms_for(self, profile: Profile, platforms: tuple[str, ...] | None = None) -> tuple[str, ...]:
        return platforms or profile.platforms or self.settings.platforms

    async def run_all(self, platforms: tuple[str, ...] | None = None) -> RunSummary:
        day = self.target_date()
        self.store.init(p.table_prefix for p in self.settings.profiles)

        results: list[PlatformResult] = []
        for profile in self.settings.profiles:
            for platform in self.platforms_for(profile, platforms):
                connector = self._connector(profile, platform)
                res = PlatformResult(
                    profile=profile.name,
                    platform=platform,
                    table=connector.table,
                    date_column=connector.date_column,
                )
                try:
                    res.count = await self._run(connector, day)
                    res.success = True
                except Exception as e:  # noqa: BLE001
                    # One platform's failure must not stop the others.
                    res.error = f"{type(e).__name__}: {e}"
                    logger.exception("[%s] failed", res.label)
                results.append(res)

        summary = RunSummary(day=day, results=results)
        self.log_summary(summary)
        return summary

    def log_summary(self, summary: RunSummary) -> None:
        logger.info("summary for %s: %d ok, %d failed", summary.day, len(summary.succeeded), len(summary.failed))
        for r in summary.results:
            if not r.success:
                logger.info("  %-24s FAILED  %s", r.label, r.error)
                continue
            try:
                stored = self.store.count_rows(r.table, date_column=r.date_column, day=summary.day)
            except StoreError as e:
                logger.warning("  %-24s ok (%d written); row count unavailable: %s", r.label, r.count, e)
                continue
            logger.info("  %-24s ok      %d written, %d stored in %s", r.label, r.count, stored, r.table)


async def run_one(settings: Settings, platform: str, store: Store | None = None, **kwargs) -> int:
    """
    Standalone single-platform run across every profile that runs `platform`.

    Every profile's credentials are checked before the first fetch, so a
    missing key aborts the run with no network calls. Any failure propagates.
    """
    runner = Runner(settings, store, **kwargs)
    day = runner.target_date()
    connectors = [
        runner._connector(profile, platform)
        for profile in settings.profiles
        if not profile.platforms or platform in profile.platforms
    ]
    if not connectors:
        raise ConfigError(f"No profile runs {platform}")
    for connector in connectors:
        ok, err = await connector.health_check()
        if not ok:
            raise ConfigError(err or f"{connector.ctx.label} is not configured")

    runner.store.init(p.table_prefix for p in settings.profiles)
    total = 0
    for connector in connectors:
        logger.info("[%s] fetching %s", connector.ctx.label, day)
        total += await connector.fetch_daily(day)
    return total
