"""
Campaign rollup for Naver StatReport rows.

Ad rows are summed per campaign, conversion totals replace (not add to) the
campaign's conversion fields, and each campaign is then routed into one of two
cohorts: brand search, or everything else ("powerlink").
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from adsync.metrics import avg_rank, compute_metrics
from adsync.parsing import AdStatRow, ConversionStatRow

logger = logging.getLogger(__name__)

BRAND_SEARCH_AD = "BRAND_SEARCH_AD"
DEFAULT_AD_TYPE = "TEXT_45"

# Naver campaignTp -> ad type
CAMPAIGN_TYPE_MAPPING = {
    "BRAND_SEARCH": BRAND_SEARCH_AD,
    "SHOPPING": "SHOPPING_PRODUCT_AD",
    "WEB_SITE": DEFAULT_AD_TYPE,
}

POWERLINK_CAMPAIGN = "Naver SA"
BRAND_CAMPAIGN = "Naver BS"


@dataclass
class CampaignStats:
    impressions: int = 0
    clicks: int = 0
    cost: float = 0.0
    sum_ad_rank: int = 0
    conversions: int = 0
    conversion_value: float = 0.0


@dataclass
class CohortTotals:
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversion: int = 0
    conversion_value: float = 0.0
    sum_ad_rank: int = 0
    campaign_count: int = 0

    def add(self, stats: CampaignStats) -> None:
        self.impressions += stats.impressions
        self.clicks += stats.clicks
        self.conversion += stats.conversions
        self.conversion_value += stats.conversion_value
        self.sum_ad_rank += stats.sum_ad_rank
        self.campaign_count += 1

    def has_activity(self) -> bool:
        return self.spend > 0 or self.impressions > 0 or self.clicks > 0


@dataclass
class CohortResult:
    powerlink: CohortTotals = field(default_factory=CohortTotals)
    brand: CohortTotals = field(default_factory=CohortTotals)


def ad_type_for(campaign_tp: Any) -> str:
    return CAMPAIGN_TYPE_MAPPING.get(str(campaign_tp or "WEB_SITE"), DEFAULT_AD_TYPE)


def aggregate_ad_rows(rows: Iterable[AdStatRow]) -> dict[str, CampaignStats]:
    stats: dict[str, CampaignStats] = {}
    for r in rows:
        s = stats.setdefault(r.campaign_id, CampaignStats())
        s.impressions += r.impressions
        s.clicks += r.clicks
        s.cost += r.cost
        s.sum_ad_rank += r.sum_ad_rank
    return stats


def merge_conversions(stats: dict[str, CampaignStats], rows: Iterable[ConversionStatRow]) -> None:
    totals: dict[str, tuple[int, float]] = {}
    for r in rows:
        count, value = totals.get(r.campaign_id, (0, 0.0))
        totals[r.campaign_id] = (count + r.conversion_count, value + r.conversion_value)

    unmatched = 0
    for campaign_id, (count, value) in totals.items():
        s = stats.get(campaign_id)
        if s is None:
            unmatched += 1
            continue
        s.conversions = count
        s.conversion_value = value
    if unmatched:
        logger.info("%d campaign(s) with conversions but no ad rows were skipped", unmatched)


def aggregate_by_cohort(
    stats: Mapping[str, CampaignStats],
    type_lookup: Mapping[str, str],
    *,
    vat_rate: float,
    brand_daily_spend: float,
) -> CohortResult:
    result = CohortResult(brand=CohortTotals(spend=brand_daily_spend))
    for campaign_id, s in stats.items():
        if type_lookup.get(campaign_id, DEFAULT_AD_TYPE) == BRAND_SEARCH_AD:
            result.brand.add(s)
        else:
            result.powerlink.spend += s.cost * vat_rate
            result.powerlink.add(s)
    return result


def aggregate(
    ad_rows: Iterable[AdStatRow],
    conversion_rows: Iterable[ConversionStatRow],
    type_lookup: Mapping[str, str],
    *,
    vat_rate: float = 1.1,
    brand_daily_spend: float = 19486.0,
) -> CohortResult:
    stats = aggregate_ad_rows(ad_rows)
    merge_conversions(stats, conversion_rows)
    result = aggregate_by_cohort(
        stats, type_lookup, vat_rate=vat_rate, brand_daily_spend=brand_daily_spend
    )
    logger.info(
        "cohorts: powerlink=%d campaign(s) spend=%.2f, brand=%d campaign(s) spend=%.2f",
        result.powerlink.campaign_count,
        result.powerlink.spend,
        result.brand.campaign_count,
        result.brand.spend,
    )
    return result


def cohort_row(day: str, campaign: str, totals: CohortTotals) -> dict[str, Any]:
    row: dict[str, Any] = {
        "date": day,
        "campaign": campaign,
        "spend": round(totals.spend, 2),
        "impressions": totals.impressions,
        "clicks": totals.clicks,
        "conversion": totals.conversion,
        "conversion_value": round(totals.conversion_value, 2),
        "quality_index": 0,
    }
    row.update(
        compute_metrics(
            spend=totals.spend,
            impressions=totals.impressions,
            clicks=totals.clicks,
            conversions=totals.conversion,
            conversion_value=totals.conversion_value,
        )
    )
    row["rank_avg"] = round(avg_rank(totals.sum_ad_rank, totals.impressions), 2)
    return row


def build_output_rows(result: CohortResult, day: str) -> list[dict[str, Any]]:
    """One row per cohort with any spend, impressions or clicks."""
    rows: list[dict[str, Any]] = []
    if result.powerlink.has_activity():
        rows.append(cohort_row(day, POWERLINK_CAMPAIGN, result.powerlink))
    if result.brand.has_activity():
        rows.append(cohort_row(day, BRAND_CAMPAIGN, result.brand))
    return rows
