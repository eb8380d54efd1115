from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
from dataclasses import replace

import httpx
import pytest

from adsync.connectors.base import ConnectorContext
from adsync.connectors.naver_searchad import NaverSearchAdClient, NaverSearchAdConnector, StatReportJobs
from adsync.errors import ReportJobError, ReportTimeoutError
from adsync.retry import PollPolicy
from adsync.store import Store

from conftest import make_profile

DAY = "2025-01-15"
DOWNLOAD = "https://api.searchad.naver.com/report-download?authtoken=abc"

AD_TSV = "\n".join(
    [
        "20250115\t1234567\tcmp-pl\tg1\tk1\ta1\tb\tm\tP\t80\t8\t400\t160\t0",
        "20250115\t1234567\tcmp-pl\tg1\tk2\ta2\tb\tm\tM\t20\t2\t100\t60\t0",
        "20250115\t1234567\tcmp-bs\tg2\tk3\ta3\tb\tm\tP\t50\t5\t900\t50\t0",
        "20250115\t1234567\tshort",
    ]
)
CONV_TSV = "\n".join(
    [
        "20250115\t1234567\tcmp-pl\tg1\tk1\ta1\tb\tm\tP\t1\tpurchase\t2\t30000",
        "20250115\t1234567\tcmp-gone\tg9\tk9\ta9\tb\tm\tP\t1\tpurchase\t9\t99000",
    ]
)


class FakeNaver:
    """Minimal SearchAd API: campaign list, report jobs and report download."""

    def __init__(self, *, statuses=None, campaigns_status=200, ad_tsv=AD_TSV, download_url=DOWNLOAD):
        self.statuses = statuses or {"AD": ["REGIST", "BUILT"], "AD_CONVERSION": ["BUILT"]}
        self.campaigns_status = campaigns_status
        self.ad_tsv = ad_tsv
        self.download_url = download_url
        self.jobs: dict[str, str] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/ncc/campaigns":
            if self.campaigns_status != 200:
                return httpx.Response(self.campaigns_status, text="nope")
            return httpx.Response(
                200,
                json=[
                    {"nccCampaignId": "cmp-pl", "campaignTp": "WEB_SITE"},
                    {"nccCampaignId": "cmp-bs", "campaignTp": "BRAND_SEARCH"},
                ],
            )
        if path == "/stat-reports" and request.method == "POST":
            body = json.loads(request.content)
            job_id = str(100 + len(self.jobs))
            self.jobs[job_id] = body["reportTp"]
            return httpx.Response(200, json={"reportJobId": int(job_id), "reportTp": body["reportTp"], "statDt": body["statDt"]})
        if path.startswith("/stat-reports/"):
            job_id = path.rsplit("/", 1)[-1]
            report_type = self.jobs[job_id]
            pending = self.statuses[report_type]
            status = pending.pop(0) if len(pending) > 1 else pending[0]
            return httpx.Response(
                200,
                json={"reportJobId": job_id, "status": status, "downloadUrl": f"{self.download_url}&job={job_id}" if self.download_url else ""},
            )
        if path == "/report-download":
            report_type = self.jobs[request.url.params["job"]]
            text = self.ad_tsv if report_type == "AD" else CONV_TSV
            return httpx.Response(200, content=text.encode("utf-8"))
        return httpx.Response(404, text=f"unexpected {request.method} {path}")


def _connector(settings, store: Store, fake: FakeNaver, sleep) -> NaverSearchAdConnector:
    ctx = ConnectorContext(
        platform="naver",
        settings=settings,
        profile=settings.profiles[0],
        transport=httpx.MockTransport(fake.handler),
        sleep=sleep,
    )
    return NaverSearchAdConnector(ctx, store)


def test_fetch_daily_writes_both_cohorts(settings, store, sleep) -> None:
    fake = FakeNaver()
    n = asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))
    assert n == 2

    rows = {r["campaign"]: r for r in store.fetch_rows("naver_insights", date_column="date", day=DAY)}
    sa = rows["Naver SA"]
    assert sa["impressions"] == 100
    assert sa["clicks"] == 10
    assert sa["spend"] == pytest.approx(550.0)
    assert sa["conversion"] == 2
    assert sa["conversion_value"] == 30000.0
    assert sa["ctr"] == 0.1
    assert sa["cpc"] == 55.0
    assert sa["cvr"] == 0.2
    assert sa["rank_avg"] == 2.2
    assert sa["quality_index"] == 0

    bs = rows["Naver BS"]
    assert bs["spend"] == 19486.0
    assert bs["impressions"] == 50
    assert bs["conversion"] == 0

    posted = [json.loads(r.content) for r in fake.requests if r.method == "POST"]
    assert posted == [{"reportTp": "AD", "statDt": "20250115"}, {"reportTp": "AD_CONVERSION", "statDt": "20250115"}]


def test_requests_are_signed(settings, store, sleep) -> None:
    fake = FakeNaver()
    asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))

    for req in fake.requests:
        ts = req.headers["X-Timestamp"]
        assert req.headers["X-API-KEY"] == "naver-key"
        assert req.headers["X-Customer"] == "1234567"
        expected = base64.b64encode(
            hmac.new(b"naver-secret", f"{ts}.{req.method}.{req.url.path}".encode(), hashlib.sha256).digest()
        ).decode()
        assert req.headers["X-Signature"] == expected
    downloads = [r for r in fake.requests if r.url.path == "/report-download"]
    assert downloads and all(r.headers["Accept"].startswith("text/csv") for r in downloads)


def test_campaign_lookup_failure_routes_everything_to_powerlink(settings, store, sleep) -> None:
    fake = FakeNaver(campaigns_status=500)
    asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))

    rows = {r["campaign"]: r for r in store.fetch_rows("naver_insights", date_column="date", day=DAY)}
    assert rows["Naver SA"]["impressions"] == 150
    assert rows["Naver SA"]["spend"] == pytest.approx(1400 * 1.1, rel=1e-6)
    # baseline spend keeps the brand row alive with no campaigns in it
    assert rows["Naver BS"]["impressions"] == 0


def test_no_data_status_skips_download(settings, store, sleep) -> None:
    fake = FakeNaver(statuses={"AD": ["NONE"], "AD_CONVERSION": ["NONE"]})
    n = asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))
    assert n == 1
    assert not [r for r in fake.requests if r.url.path == "/report-download"]
    [row] = store.fetch_rows("naver_insights", date_column="date", day=DAY)
    assert row["campaign"] == "Naver BS"


def test_missing_download_url_fails_before_download(settings, store, sleep) -> None:
    fake = FakeNaver(download_url="")
    with pytest.raises(ReportJobError, match="downloadUrl"):
        asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))
    assert not [r for r in fake.requests if r.url.path == "/report-download"]
    assert store.count_rows("naver_insights", date_column="date", day=DAY) == 0


def test_failed_report_aborts_the_job(settings, store, sleep) -> None:
    fake = FakeNaver(statuses={"AD": ["RUNNING", "FAILED"], "AD_CONVERSION": ["BUILT"]})
    with pytest.raises(ReportJobError):
        asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))
    assert store.count_rows("naver_insights", date_column="date", day=DAY) == 0


def test_poll_budget_exhaustion(settings, store, sleep) -> None:
    settings = replace(settings, naver_report=replace(settings.naver_report, max_attempts=3, poll_interval_sec=10.0))
    fake = FakeNaver(statuses={"AD": ["RUNNING"], "AD_CONVERSION": ["BUILT"]})
    with pytest.raises(ReportTimeoutError):
        asyncio.run(_connector(settings, store, fake, sleep).fetch_daily(DAY))
    assert len([r for r in fake.requests if r.url.path.startswith("/stat-reports/")]) == 3
    assert sleep.calls.count(10.0) == 3


def test_health_check_lists_missing_env(settings, store, sleep) -> None:
    settings = replace(settings, profiles=(make_profile("dok", configured=False),))
    ok, err = asyncio.run(_connector(settings, store, FakeNaver(), sleep).health_check())
    assert not ok
    assert "DOK_NAVER_SEARCHAD_API_KEY" in err
    assert "DOK_NAVER_SEARCHAD_CUSTOMER_ID" in err


def test_signature_matches_reference_vector() -> None:
    client = NaverSearchAdClient(base_url="https://x", api_key="k", secret_key="secret", customer_id="1")
    sig = client._signature("1700000000000", "GET", "/ncc/campaigns")
    expected = base64.b64encode(
        hmac.new(b"secret", b"1700000000000.GET./ncc/campaigns", hashlib.sha256).digest()
    ).decode()
    assert sig == expected


def test_create_report_without_job_id_raises(sleep) -> None:
    client = NaverSearchAdClient(
        base_url="https://api.searchad.naver.com",
        api_key="k",
        secret_key="s",
        customer_id="1",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"status": "REGIST"})),
    )
    jobs = StatReportJobs(client, PollPolicy(), sleep=sleep)
    with pytest.raises(ReportJobError, match="no job id"):
        asyncio.run(jobs.create_report("AD", DAY))
