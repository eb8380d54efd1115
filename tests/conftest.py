from __future__ import annotations

from pathlib import Path

import pytest

from adsync.config import (
    GoogleCredentials,
    MetaCredentials,
    MetaSettings,
    NaverCredentials,
    NaverReportSettings,
    Profile,
    Settings,
)
from adsync.store import Store


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_profile(name: str = "default", *, configured: bool = True) -> Profile:
    prefix = "" if name == "default" else f"{name.upper()}_"
    v = (lambda s: s) if configured else (lambda s: "")
    return Profile(
        name=name,
        table_prefix="" if name == "default" else f"{name}_",
        naver=NaverCredentials(
            api_key=v("naver-key"),
            secret_key=v("naver-secret"),
            customer_id=v("1234567"),
            base_url="https://api.searchad.naver.com",
            env_prefix=prefix,
        ),
        meta=MetaCredentials(
            access_token=v("meta-token"),
            ad_account_id=v("act_1234567890"),
            app_secret=None,
            env_prefix=prefix,
        ),
        google=GoogleCredentials(
            developer_token=v("dev-token"),
            client_id=v("client-id"),
            client_secret=v("client-secret"),
            refresh_token=v("refresh-token"),
            customer_id=v("866-682-9099"),
            login_customer_id="",
            json_key_file_path=None,
            env_prefix=prefix,
        ),
    )


def make_settings(tmp_path: Path, *, profiles: tuple[Profile, ...] | None = None, **overrides) -> Settings:
    values = dict(
        db_path=tmp_path / "adsync.sqlite3",
        timezone="Asia/Seoul",
        target_date="2025-01-15",
        profiles=profiles or (make_profile(),),
        platforms=("meta", "naver", "google"),
        http_timeout_sec=5.0,
        naver_report=NaverReportSettings(),
        meta=MetaSettings(),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def store(settings: Settings) -> Store:
    s = Store(settings.db_path)
    s.init(p.table_prefix for p in settings.profiles)
    return s
