from __future__ import annotations

import logging
from typing import Any

import httpx

from adsync.connectors.base import ConnectorContext
from adsync.connectors.meta_ads import MetaGraphClient, action_map, normalize_account_id, time_range
from adsync.errors import VendorAPIError
from adsync.store import Store
from adsync.util import chunked, to_float, to_int

logger = logging.getLogger(__name__)

INSIGHT_FIELDS = [
    "date_start",
    "date_stop",
    "campaign_name",
    "adset_name",
    "adset_id",
    "impressions",
    "reach",
    "clicks",
    "ctr",
    "cpc",
    "spend",
    "cpm",
    "frequency",
    "actions",
    "action_values",
    "cost_per_action_type",
    "cost_per_result",
]

DETAIL_FIELDS = [
    "id",
    "name",
    "daily_budget",
    "bid_strategy",
    "optimization_goal",
    "configured_status",
    "effective_status",
    "status",
    "learning_stage_info",
]

DETAIL_CHUNK_SIZE = 50

# Fallback action types for cost_per_result, after the ad set's optimization goal.
COST_PER_RESULT_ACTIONS = [
    "purchase",
    "offsite_conversion.fb_pixel_purchase",
    "landing_page_view",
    "link_click",
    "view_content",
    "add_to_cart",
]


def cost_per_result(raw_value: Any, cost_per: dict[str, float], optimization_goal: Any) -> float:
    reported = to_float(raw_value)
    if reported > 0:
        return reported
    candidates: list[str] = []
    if isinstance(optimization_goal, str) and optimization_goal:
        candidates += [optimization_goal, optimization_goal.lower(), optimization_goal.upper()]
    candidates += COST_PER_RESULT_ACTIONS
    for t in candidates:
        v = cost_per.get(t, 0.0)
        if v > 0:
            return v
    return 0.0


def learning_phase(detail: dict[str, Any]) -> str | None:
    info = detail.get("learning_stage_info")
    if isinstance(info, dict):
        for k in ("status", "stage", "description"):
            if info.get(k):
                return str(info[k])
    return detail.get("learning_phase") or None


def adset_row(raw: dict[str, Any], detail: dict[str, Any], day: str, timezone_name: str | None) -> dict[str, Any]:
    actions = action_map(raw.get("actions"))
    cost_per = action_map(raw.get("cost_per_action_type"))
    spend = to_float(raw.get("spend"))

    lpv = actions.get("landing_page_view", 0.0)
    cost_per_lpv = cost_per.get("landing_page_view", 0.0)
    if cost_per_lpv <= 0:
        cost_per_lpv = spend / lpv if lpv > 0 else 0.0

    # Budgets come in the currency's minor unit.
    budget = to_float(detail.get("daily_budget"))

    return {
        "date_start": raw.get("date_start") or day,
        "date_stop": raw.get("date_stop") or day,
        "time_zone": timezone_name,
        "campaign_name": raw.get("campaign_name") or None,
        "adset_name": raw.get("adset_name") or None,
        "adset_id": raw.get("adset_id") or None,
        "impressions": to_int(raw.get("impressions")),
        "reach": to_int(raw.get("reach")),
        "clicks": to_int(raw.get("clicks")),
        "ctr": to_float(raw.get("ctr")),
        "cpc": to_float(raw.get("cpc")),
        "landing_page_views": lpv,
        "cost_per_landing_page_view": cost_per_lpv,
        "spend": spend,
        "cpm": to_float(raw.get("cpm")),
        "frequency": to_float(raw.get("frequency")),
        "view_content": actions.get("view_content", 0.0),
        "add_to_cart": actions.get("add_to_cart", 0.0),
        "purchase": actions.get("purchase", 0.0),
        "cost_per_result": cost_per_result(raw.get("cost_per_result"), cost_per, detail.get("optimization_goal")),
        "learning_phase": learning_phase(detail),
        "optimization_goal": detail.get("optimization_goal") or None,
        "daily_budget": budget / 100 if budget > 0 else 0.0,
        "bid_strategy": detail.get("bid_strategy") or None,
        "status": detail.get("status") or detail.get("effective_status") or detail.get("configured_status") or None,
    }


class MetaAdsetConnector:
    """Meta ad-set level daily insights joined with ad-set settings."""

    base_table = "meta_adset_insights"
    conflict_keys = ["date_start", "adset_id"]
    date_column = "date_start"

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

    async def account_timezone(self) -> str | None:
        try:
            obj = await self.graph.get_object(
                self.graph.account_path, {"fields": "timezone_name"}, label="Meta Ad Account API"
            )
        except (httpx.HTTPError, VendorAPIError) as e:
            logger.warning("account timezone lookup failed: %s", e)
            return None
        tz = obj.get("timezone_name") if isinstance(obj, dict) else None
        return tz if isinstance(tz, str) and tz else None

    async def adset_details(self, adset_ids: list[str]) -> dict[str, dict[str, Any]]:
        details: dict[str, dict[str, Any]] = {}
        for ids in chunked(adset_ids, DETAIL_CHUNK_SIZE):
            obj = await self.graph.get_object(
                "",
                {"ids": ",".join(ids), "fields": ",".join(DETAIL_FIELDS)},
                label="Meta Adset Detail API",
            )
            if isinstance(obj, dict):
                details.update({k: v for k, v in obj.items() if isinstance(v, dict)})
        return details

    async def fetch_daily(self, day: str) -> int:
        tz = await self.account_timezone()
        insights = await self.graph.get_all(
            f"{self.graph.account_path}/insights",
            {
                "level": "adset",
                "time_range": time_range(day),
                "fields": ",".join(INSIGHT_FIELDS),
                "limit": 500,
            },
            label="Meta Adset Insights API",
        )
        if not insights:
            logger.info("%s: no ad-set insights for %s", self.ctx.label, day)
            return 0

        adset_ids: list[str] = []
        for r in insights:
            aid = r.get("adset_id")
            if isinstance(aid, str) and aid and aid not in adset_ids:
                adset_ids.append(aid)
        details = await self.adset_details(adset_ids) if adset_ids else {}

        rows = [adset_row(r, details.get(str(r.get("adset_id")), {}), day, tz) for r in insights]
        rows = [r for r in rows if r["adset_id"]]
        written = self.store.upsert(self.table, rows, self.conflict_keys)
        logger.info("%s: %d ad set row(s) written to %s for %s", self.ctx.label, written, self.table, day)
        return written
