from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from adsync.connectors.base import ConnectorContext
from adsync.errors import ConfigError
from adsync.metrics import compute_metrics
from adsync.store import Store
from adsync.util import to_float

logger = logging.getLogger(__name__)

CAMPAIGN_QUERY = """
SELECT
  campaign.id,
  campaign.name,
  campaign.status,
  metrics.impressions,
  metrics.clicks,
  metrics.cost_micros,
  metrics.conversions,
  metrics.conversions_value,
  metrics.search_impression_share
FROM campaign
WHERE segments.date = '{day}'
  AND campaign.status = 'ENABLED'
ORDER BY metrics.cost_micros DESC
"""


def _normalize_customer_id(raw: str) -> str:
    # Google Ads customer id is digits only (UI shows hyphens).
    return re.sub(r"\D+", "", str(raw or ""))


def _cost_micros_to_currency(cost_micros: Any) -> float:
    return to_float(cost_micros) / 1_000_000.0


def campaign_row(row: Any, day: str) -> dict[str, Any]:
    m = row.metrics
    spend = _cost_micros_to_currency(m.cost_micros)
    impressions = int(to_float(m.impressions))
    clicks = int(to_float(m.clicks))
    conversions = to_float(m.conversions)
    conversion_value = to_float(m.conversions_value)

    out: dict[str, Any] = {
        "date": day,
        "campaign": str(row.campaign.name or ""),
        "campaign_id": str(row.campaign.id),
        "spend": spend,
        "impressions": impressions,
        "clicks": clicks,
        "conversion": conversions,
        "conversion_value": conversion_value,
    }
    out.update(
        compute_metrics(
            spend=spend,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            conversion_value=conversion_value,
        )
    )
    # Quality score is keyword-level and top-impression rate needs its own query.
    out["search_impr_share"] = round(to_float(m.search_impression_share) * 100, 2)
    out["quality_score"] = 0
    out["top_impr_rate"] = 0
    return out


class GoogleAdsConnector:
    """
    Google Ads campaign-level daily metrics.

    Uses GAQL via the official `google-ads` Python client.
    """

    base_table = "google_insights"
    conflict_keys = ["date", "campaign_id"]
    date_column = "date"

    def __init__(self, ctx: ConnectorContext, store: Store):
        self.ctx = ctx
        self.store = store
        self.table = ctx.profile.table(self.base_table)
        self.creds = ctx.profile.google

    def _google_client(self):
        try:
            from google.ads.googleads.client import GoogleAdsClient  # type: ignore
        except ImportError as e:
            raise ConfigError("Missing dependency: google-ads") from e

        cfg: dict[str, Any] = {
            "developer_token": self.creds.developer_token,
            "use_proto_plus": True,
        }
        if self.creds.json_key_file_path:
            cfg["json_key_file_path"] = self.creds.json_key_file_path
        else:
            cfg.update(
                client_id=self.creds.client_id,
                client_secret=self.creds.client_secret,
                refresh_token=self.creds.refresh_token,
            )
        login_customer_id = _normalize_customer_id(self.creds.login_customer_id)
        if login_customer_id:
            cfg["login_customer_id"] = login_customer_id
        return GoogleAdsClient.load_from_dict(cfg)

    def _customer_id(self) -> str:
        return _normalize_customer_id(self.creds.customer_id)

    async def health_check(self) -> tuple[bool, str | None]:
        missing = self.creds.missing()
        if missing:
            return False, f"Missing {', '.join(missing)}"
        if not self._customer_id():
            return False, f"{self.creds.env_prefix}GOOGLE_ADS_CUSTOMER_ID has no digits"
        return True, None

    def _fetch_rows(self, day: str) -> list[dict[str, Any]]:
        customer_id = self._customer_id()
        client = self._google_client()
        ga_service = client.get_service("GoogleAdsService")

        rows: list[dict[str, Any]] = []
        for batch in ga_service.search_stream(customer_id=customer_id, query=CAMPAIGN_QUERY.format(day=day)):
            for row in batch.results:
                rows.append(campaign_row(row, day))
        return rows

    async def fetch_daily(self, day: str) -> int:
        rows = await asyncio.to_thread(self._fetch_rows, day)
        if not rows:
            logger.info("%s: no enabled campaigns with data for %s", self.ctx.label, day)
            return 0
        written = self.store.upsert(self.table, rows, self.conflict_keys)
        logger.info("%s: %d campaign row(s) written to %s for %s", self.ctx.label, written, self.table, day)
        return written
