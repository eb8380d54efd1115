"""
Derived ad metrics.

Every ratio returns 0.0 when its denominator is not positive, so no NaN or
infinity ever reaches the store.
"""

from __future__ import annotations

from typing import Any


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def ctr(clicks: float, impressions: float) -> float:
    return _ratio(clicks, impressions)


def cpc(spend: float, clicks: float) -> float:
    return _ratio(spend, clicks)


def cvr(conversions: float, clicks: float) -> float:
    return _ratio(conversions, clicks)


def cpm(spend: float, impressions: float) -> float:
    return _ratio(spend, impressions) * 1000


def cpa(spend: float, conversions: float) -> float:
    return _ratio(spend, conversions)


def aov(conversion_value: float, conversions: float) -> float:
    return _ratio(conversion_value, conversions)


def roas(conversion_value: float, spend: float) -> float:
    return _ratio(conversion_value, spend)


def avg_rank(sum_ad_rank: float, impressions: float) -> float:
    return _ratio(sum_ad_rank, impressions)


def compute_metrics(
    *,
    spend: float,
    impressions: float,
    clicks: float,
    conversions: float,
    conversion_value: float,
) -> dict[str, Any]:
    """Ratio columns shared by every platform's output row, rounded for storage."""
    return {
        "ctr": round(ctr(clicks, impressions), 4),
        "cpc": round(cpc(spend, clicks), 2),
        "cvr": round(cvr(conversions, clicks), 4),
        "cpm": round(cpm(spend, impressions), 2),
        "cpa": round(cpa(spend, conversions), 2),
        "aov": round(aov(conversion_value, conversions), 2),
        "roas": round(roas(conversion_value, spend), 4),
    }
