from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from dataclasses import replace

import httpx
import pytest

from adsync.connectors.base import ConnectorContext
from adsync.connectors.meta_ads import MetaAdsConnector, insight_row, normalize_account_id
from adsync.errors import VendorAPIError
from adsync.store import Store

DAY = "2025-01-15"
GRAPH = "https://graph.facebook.com/v21.0"


def _ctx(settings, handler, sleep) -> ConnectorContext:
    return ConnectorContext(
        platform="meta",
        settings=settings,
        profile=settings.profiles[0],
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )


def _insight(**kw) -> dict:
    row = {
        "date_start": DAY,
        "spend": "1000",
        "impressions": "20000",
        "clicks": "400",
        "actions": [
            {"action_type": "link_click", "value": "200"},
            {"action_type": "purchase", "value": "4"},
        ],
        "action_values": [{"action_type": "purchase", "value": "120000"}],
    }
    row.update(kw)
    return row


def test_normalize_account_id() -> None:
    assert normalize_account_id("act_123-456") == "123456"
    assert normalize_account_id(" 987 ") == "987"
    assert normalize_account_id("act_") == ""


def test_insight_row_uses_link_clicks_and_purchases() -> None:
    row = insight_row(_insight(), DAY)
    assert row["campaign"] == "Meta"
    assert row["clicks"] == 200
    assert row["conversion"] == 4
    assert row["conversion_value"] == 120000.0
    assert row["ctr"] == 0.01
    assert row["cpc"] == 5.0
    assert row["cpa"] == 250.0
    assert row["roas"] == 120.0
    assert row["aov"] == 30000.0


def test_insight_row_prefers_reported_cpa() -> None:
    row = insight_row(_insight(cost_per_action_type=[{"action_type": "purchase", "value": "199.5"}]), DAY)
    assert row["cpa"] == 199.5
    # a zero reported cost falls back to spend / conversions
    row = insight_row(_insight(cost_per_action_type=[{"action_type": "purchase", "value": "0"}]), DAY)
    assert row["cpa"] == 250.0


def test_insight_row_without_actions() -> None:
    row = insight_row({"spend": "10", "impressions": "0"}, DAY)
    assert row["date"] == DAY
    assert row["clicks"] == 0
    assert row["ctr"] == 0
    assert row["cpm"] == 0


def test_fetch_daily_paginates_and_upserts(settings, store: Store, sleep) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if "after" not in request.url.params:
            return httpx.Response(
                200,
                json={"data": [_insight()], "paging": {"next": f"{GRAPH}/act_1234567890/insights?after=c1&access_token=meta-token"}},
            )
        return httpx.Response(200, json={"data": [_insight(date_start="2025-01-16")]})

    n = asyncio.run(MetaAdsConnector(_ctx(settings, handler, sleep), store).fetch_daily(DAY))
    assert n == 2
    assert len(seen) == 2

    first = seen[0]
    assert first.url.path == "/v21.0/act_1234567890/insights"
    assert json.loads(first.url.params["time_range"]) == {"since": DAY, "until": DAY}
    assert "cost_per_action_type" in first.url.params["fields"]
    assert first.url.params["access_token"] == "meta-token"
    assert "appsecret_proof" not in first.url.params

    [row] = store.fetch_rows("meta_insights", date_column="date", day=DAY)
    assert row["clicks"] == 200
    assert row["spend"] == 1000.0


def test_fetch_daily_retries_rate_limits(settings, store: Store, sleep) -> None:
    responses = [
        httpx.Response(400, json={"error": {"code": 17, "message": "limit"}}),
        httpx.Response(200, json={"data": [_insight()]}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    n = asyncio.run(MetaAdsConnector(_ctx(settings, handler, sleep), store).fetch_daily(DAY))
    assert n == 1
    assert sleep.calls == [30.0]


def test_fetch_daily_raises_on_permanent_error(settings, store: Store, sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": 190, "message": "Invalid OAuth access token"}})

    with pytest.raises(VendorAPIError, match="Invalid OAuth"):
        asyncio.run(MetaAdsConnector(_ctx(settings, handler, sleep), store).fetch_daily(DAY))
    assert sleep.calls == []
    assert store.count_rows("meta_insights", date_column="date", day=DAY) == 0


def test_appsecret_proof_is_sent_when_configured(settings, store: Store, sleep) -> None:
    profile = settings.profiles[0]
    profile = replace(profile, meta=replace(profile.meta, app_secret="shh"))
    settings = replace(settings, profiles=(profile,))
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": []})

    assert asyncio.run(MetaAdsConnector(_ctx(settings, handler, sleep), store).fetch_daily(DAY)) == 0
    expected = hmac.new(b"shh", b"meta-token", hashlib.sha256).hexdigest()
    assert seen[0].url.params["appsecret_proof"] == expected


def test_health_check(settings, store: Store, sleep) -> None:
    ok, err = asyncio.run(MetaAdsConnector(_ctx(settings, lambda r: httpx.Response(500), sleep), store).health_check())
    assert ok and err is None

    profile = settings.profiles[0]
    bad = replace(settings, profiles=(replace(profile, meta=replace(profile.meta, access_token="")),))
    ok, err = asyncio.run(MetaAdsConnector(_ctx(bad, lambda r: httpx.Response(500), sleep), store).health_check())
    assert not ok
    assert "META_ACCESS_TOKEN" in err
