from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

import httpx

from adsync.config import Profile, Settings


@dataclass(frozen=True)
class ConnectorContext:
    platform: str
    settings: Settings
    profile: Profile
    # Test seam: an httpx transport (e.g. MockTransport) and a sleep function.
    transport: httpx.AsyncBaseTransport | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @property
    def label(self) -> str:
        if self.profile.table_prefix:
            return f"{self.profile.name}:{self.platform}"
        return self.platform


class BaseConnector(Protocol):
    table: str
    conflict_keys: list[str]
    date_column: str

    async def health_check(self) -> tuple[bool, str | None]:
        """Return (ok, error). Must never raise and must not touch the network."""

    async def fetch_daily(self, day: str) -> int:
        """Fetch one day of metrics, upsert them, and return the number of rows written."""
