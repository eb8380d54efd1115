from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
from typing import Any

import httpx

from adsync.config import MetaCredentials, MetaSettings
from adsync.connectors.base import ConnectorContext
from adsync.metrics import compute_metrics
from adsync.retry import with_retry
from adsync.store import Store
from adsync.util import to_float

logger = logging.getLogger(__name__)


def normalize_account_id(raw: str) -> str:
    raw = str(raw or "").strip().removeprefix("act_").strip()
    # keep digits only (UI sometimes includes separators)
    return re.sub(r"\D+", "", raw)


def action_map(items: Any) -> dict[str, float]:
    out: dict[str, float] = {}
    if not isinstance(items, list):
        return out
    for it in items:
        if not isinstance(it, dict):
            continue
        t = str(it.get("action_type") or "").strip()
        if not t:
            continue
        out[t] = out.get(t, 0.0) + to_float(it.get("value"))
    return out


class MetaGraphClient:
    """Graph API reads with rate-limit retry and cursor pagination."""

    def __init__(self, creds: MetaCredentials, settings: MetaSettings, ctx: ConnectorContext):
        self.creds = creds
        self.settings = settings
        self.ctx = ctx

    @property
    def account_path(self) -> str:
        return f"act_{normalize_account_id(self.creds.ad_account_id)}"

    def _appsecret_proof(self) -> str | None:
        # https://developers.facebook.com/docs/graph-api/securing-requests/
        if not self.creds.app_secret or not self.creds.access_token:
            return None
        return hmac.new(
            self.creds.app_secret.encode("utf-8", errors="strict"),
            self.creds.access_token.encode("utf-8", errors="strict"),
            hashlib.sha256,
        ).hexdigest()

    def _auth_params(self) -> dict[str, Any]:
        p: dict[str, Any] = {"access_token": self.creds.access_token}
        proof = self._appsecret_proof()
        if proof:
            p["appsecret_proof"] = proof
        return p

    def url(self, path: str = "") -> str:
        return f"{self.settings.graph_base_url}/{self.settings.graph_version}/{path.lstrip('/')}"

    async def _get(self, client: httpx.AsyncClient, url: str, params: dict[str, Any] | None, label: str) -> Any:
        async def request() -> httpx.Response:
            return await client.get(url, params=params)

        return await with_retry(
            request,
            self.settings.retry_max_attempts,
            label=label,
            base_delay_sec=self.settings.retry_base_delay_sec,
            network_delay_sec=self.settings.network_retry_delay_sec,
            sleep=self.ctx.sleep,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.ctx.transport, timeout=self.ctx.settings.http_timeout_sec)

    async def get_object(self, path: str, params: dict[str, Any], *, label: str) -> Any:
        async with self._client() as client:
            return await self._get(client, self.url(path), {**params, **self._auth_params()}, label)

    async def get_all(self, path: str, params: dict[str, Any], *, label: str) -> list[dict[str, Any]]:
        """Follow `paging.next` until exhausted; each page goes through the retry wrapper."""
        out: list[dict[str, Any]] = []
        url: str | None = self.url(path)
        next_params: dict[str, Any] | None = {**params, **self._auth_params()}
        pages = 0
        async with self._client() as client:
            while url:
                obj = await self._get(client, url, next_params, label)
                pages += 1
                data = obj.get("data") if isinstance(obj, dict) else None
                if isinstance(data, list):
                    out.extend(it for it in data if isinstance(it, dict))
                paging = obj.get("paging") if isinstance(obj, dict) else None
                next_url = paging.get("next") if isinstance(paging, dict) else None
                url = str(next_url) if next_url else None
                next_params = None  # next URL already includes query params.
        logger.info("%s: %d row(s) over %d page(s)", label, len(out), pages)
        return out


def time_range(day: str) -> str:
    return json.dumps({"since": day, "until": day})


def insight_row(raw: dict[str, Any], day: str) -> dict[str, Any]:
    """Account-level daily insight -> `meta_insights` row. Clicks are link clicks."""
    spend = to_float(raw.get("spend"))
    impressions = int(to_float(raw.get("impressions")))
    actions = action_map(raw.get("actions"))
    values = action_map(raw.get("action_values"))
    cost_per = action_map(raw.get("cost_per_action_type"))

    clicks = int(actions.get("link_click", 0.0))
    conversions = actions.get("purchase", 0.0)
    conversion_value = values.get("purchase", 0.0)

    row: dict[str, Any] = {
        "date": raw.get("date_start") or day,
        "campaign": "Meta",
        "spend": spend,
        "impressions": impressions,
        "clicks": clicks,
        "conversion": conversions,
        "conversion_value": conversion_value,
    }
    row.update(
        compute_metrics(
            spend=spend,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            conversion_value=conversion_value,
        )
    )
    reported_cpa = cost_per.get("purchase", 0.0)
    if reported_cpa > 0:
        row["cpa"] = round(reported_cpa, 2)
    return row


class MetaAdsConnector:
    """
    Meta Ads account-level daily insights (Graph API).

    Writes one "Meta" row per day into `meta_insights`.
    """

    base_table = "meta_insights"
    conflict_keys = ["date", "campaign"]
    date_column = "date"
    fields = ["date_start", "spend", "impressions", "clicks", "actions", "action_values", "cost_per_action_type"]

    def __init__(self, ctx: ConnectorContext, store: Store):
        self.ctx = ctx
        self.store = store
        self.table = ctx.profile.table(self.base_table)
        self.creds = ctx.profile.meta
        self.graph = MetaGraphClient(self.creds, ctx.settings.meta, ctx)

    async def health_check(self) -> tuple[bool, str | None]:
        missing = self.creds.missing()
        if missing:
            return False, f"Missing {', '.join(missing)}"
        if not normalize_account_id(self.creds.ad_account_id):
            return False, f"{self.creds.env_prefix}META_AD_ACCOUNT_ID has no digits"
        return True, None

    async def fetch_daily(self, day: str) -> int:
        data = await self.graph.get_all(
            f"{self.graph.account_path}/insights",
            {"time_range": time_range(day), "fields": ",".join(self.fields)},
            label="Meta Insights API",
        )
        rows = [insight_row(r, day) for r in data]
        if not rows:
            logger.info("%s: no insights for %s", self.ctx.label, day)
            return 0
        written = self.store.upsert(self.table, rows, self.conflict_keys)
        logger.info("%s: %d row(s) written to %s for %s", self.ctx.label, written, self.table, day)
        return written
