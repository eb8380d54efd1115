from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
import os
import re

from dotenv import load_dotenv

from adsync.errors import ConfigError

DEFAULT_PROFILE = "default"
ALL_PLATFORMS = ("meta", "meta_adset", "naver", "google")
DEFAULT_PLATFORMS = ("meta", "naver", "google")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _float_env(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _env(name)
    if not raw:
        return default
    out: list[str] = []
    for part in raw.split(","):
        p = part.strip().lower()
        if p and p not in out:
            out.append(p)
    return tuple(out) or default


def _platforms_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    platforms = _csv_env(name, default)
    unknown = [p for p in platforms if p not in ALL_PLATFORMS]
    if unknown:
        raise ConfigError(f"Unknown platform(s) in {name}: {', '.join(unknown)}")
    return platforms


def _valid_date(raw: str) -> str | None:
    if not raw or not _DATE_RE.match(raw):
        return None
    try:
        return date.fromisoformat(raw).isoformat()
    except ValueError:
        return None


def _missing(pairs: list[tuple[str, str]]) -> list[str]:
    return [name for name, value in pairs if not value]


@dataclass(frozen=True)
class NaverCredentials:
    api_key: str
    secret_key: str
    customer_id: str
    base_url: str
    env_prefix: str = ""

    def missing(self) -> list[str]:
        p = self.env_prefix
        return _missing(
            [
                (f"{p}NAVER_SEARCHAD_API_KEY", self.api_key),
                (f"{p}NAVER_SEARCHAD_SECRET_KEY", self.secret_key),
                (f"{p}NAVER_SEARCHAD_CUSTOMER_ID", self.customer_id),
            ]
        )


@dataclass(frozen=True)
class MetaCredentials:
    access_token: str
    ad_account_id: str
    app_secret: str | None
    env_prefix: str = ""

    def missing(self) -> list[str]:
        p = self.env_prefix
        return _missing(
            [
                (f"{p}META_ACCESS_TOKEN", self.access_token),
                (f"{p}META_AD_ACCOUNT_ID", self.ad_account_id),
            ]
        )


@dataclass(frozen=True)
class GoogleCredentials:
    developer_token: str
    client_id: str
    client_secret: str
    refresh_token: str
    customer_id: str
    login_customer_id: str
    json_key_file_path: str | None
    env_prefix: str = ""

    def missing(self) -> list[str]:
        p = self.env_prefix
        pairs = [
            (f"{p}GOOGLE_ADS_DEVELOPER_TOKEN", self.developer_token),
            (f"{p}GOOGLE_ADS_CUSTOMER_ID", self.customer_id),
        ]
        # A service-account key file replaces the OAuth refresh-token trio.
        if not self.json_key_file_path:
            pairs += [
                (f"{p}GOOGLE_ADS_CLIENT_ID", self.client_id),
                (f"{p}GOOGLE_ADS_CLIENT_SECRET", self.client_secret),
                (f"{p}GOOGLE_ADS_REFRESH_TOKEN", self.refresh_token),
            ]
        return _missing(pairs)


@dataclass(frozen=True)
class Profile:
    """One set of ad accounts and the table prefix its rows are written under."""

    name: str
    table_prefix: str
    naver: NaverCredentials
    meta: MetaCredentials
    google: GoogleCredentials
    # Empty means the run-wide ADSYNC_PLATFORMS list.
    platforms: tuple[str, ...] = ()

    def table(self, base: str) -> str:
        return f"{self.table_prefix}{base}"

    @staticmethod
    def load(name: str) -> "Profile":
        name = name.strip().lower()
        if not re.fullmatch(r"[a-z][a-z0-9_]*", name):
            raise ConfigError(f"Invalid profile name: {name!r}")
        if name == DEFAULT_PROFILE:
            p, table_prefix = "", ""
        else:
            p, table_prefix = f"{name.upper()}_", f"{name}_"

        naver = NaverCredentials(
            api_key=_env(f"{p}NAVER_SEARCHAD_API_KEY"),
            secret_key=_env(f"{p}NAVER_SEARCHAD_SECRET_KEY"),
            customer_id=_env(f"{p}NAVER_SEARCHAD_CUSTOMER_ID"),
            base_url=_env("NAVER_SEARCHAD_BASE_URL", "https://api.searchad.naver.com")
            or "https://api.searchad.naver.com",
            env_prefix=p,
        )
        meta = MetaCredentials(
            access_token=_env(f"{p}META_ACCESS_TOKEN"),
            ad_account_id=_env(f"{p}META_AD_ACCOUNT_ID"),
            app_secret=_env(f"{p}META_APP_SECRET") or None,
            env_prefix=p,
        )
        google = GoogleCredentials(
            developer_token=_env(f"{p}GOOGLE_ADS_DEVELOPER_TOKEN"),
            client_id=_env(f"{p}GOOGLE_ADS_CLIENT_ID"),
            client_secret=_env(f"{p}GOOGLE_ADS_CLIENT_SECRET"),
            refresh_token=_env(f"{p}GOOGLE_ADS_REFRESH_TOKEN"),
            customer_id=_env(f"{p}GOOGLE_ADS_CUSTOMER_ID"),
            login_customer_id=_env(f"{p}GOOGLE_ADS_LOGIN_CUSTOMER_ID"),
            json_key_file_path=_env(f"{p}GOOGLE_ADS_JSON_KEY_FILE_PATH") or None,
            env_prefix=p,
        )
        platforms = ()
        if name != DEFAULT_PROFILE:
            platforms = _platforms_env(f"ADSYNC_{name.upper()}_PLATFORMS", ())
        return Profile(
            name=name,
            table_prefix=table_prefix,
            naver=naver,
            meta=meta,
            google=google,
            platforms=platforms,
        )


@dataclass(frozen=True)
class NaverReportSettings:
    max_attempts: int = 30
    poll_interval_sec: float = 10.0
    api_delay_sec: float = 1.0
    vat_rate: float = 1.1
    brand_search_daily_spend: float = 19486.0


@dataclass(frozen=True)
class MetaSettings:
    graph_base_url: str = "https://graph.facebook.com"
    graph_version: str = "v21.0"
    retry_max_attempts: int = 3
    retry_base_delay_sec: float = 30.0
    network_retry_delay_sec: float = 30.0


@dataclass(frozen=True)
class Settings:
    db_path: Path
    timezone: str
    target_date: str | None
    profiles: tuple[Profile, ...]
    platforms: tuple[str, ...]
    http_timeout_sec: float
    naver_report: NaverReportSettings
    meta: MetaSettings

    def profile(self, name: str) -> Profile:
        for p in self.profiles:
            if p.name == name:
                return p
        raise ConfigError(f"Unknown profile: {name!r}")

    @staticmethod
    def load() -> "Settings":
        load_dotenv()

        db_path = Path(os.getenv("ADSYNC_DB_PATH", "./data/adsync.sqlite3"))
        timezone = _env("ADSYNC_TIMEZONE", "Asia/Seoul") or "Asia/Seoul"

        # Malformed or impossible overrides fall back to the scheduled default (yesterday).
        target_date = _valid_date(_env("TARGET_DATE"))

        profiles = tuple(Profile.load(n) for n in _csv_env("ADSYNC_PROFILES", (DEFAULT_PROFILE,)))
        platforms = _platforms_env("ADSYNC_PLATFORMS", DEFAULT_PLATFORMS)

        naver_report = NaverReportSettings(
            max_attempts=_int_env("NAVER_REPORT_MAX_ATTEMPTS", 30),
            poll_interval_sec=_float_env("NAVER_REPORT_POLL_INTERVAL_SEC", 10.0),
            api_delay_sec=_float_env("NAVER_API_DELAY_SEC", 1.0),
            vat_rate=_float_env("NAVER_VAT_RATE", 1.1),
            brand_search_daily_spend=_float_env("NAVER_BRAND_SEARCH_DAILY_SPEND", 19486.0),
        )
        meta = MetaSettings(
            graph_base_url=(_env("META_GRAPH_BASE_URL", "https://graph.facebook.com") or "https://graph.facebook.com").rstrip("/"),
            graph_version=_env("META_GRAPH_API_VERSION") or "v21.0",
            retry_max_attempts=_int_env("META_RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay_sec=_float_env("META_RETRY_BASE_DELAY_SEC", 30.0),
            network_retry_delay_sec=_float_env("META_NETWORK_RETRY_DELAY_SEC", 30.0),
        )

        return Settings(
            db_path=db_path,
            timezone=timezone,
            target_date=target_date,
            profiles=profiles,
            platforms=platforms,
            http_timeout_sec=_float_env("ADSYNC_HTTP_TIMEOUT_SEC", 30.0),
            naver_report=naver_report,
            meta=meta,
        )
