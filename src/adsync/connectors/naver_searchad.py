from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from adsync.aggregate import aggregate, ad_type_for, build_output_rows
from adsync.connectors.base import ConnectorContext
from adsync.errors import ReportJobError, VendorAPIError
from adsync.parsing import (
    AD_REPORT_SCHEMA,
    CONVERSION_REPORT_SCHEMA,
    ReportSchema,
    parse_delimited,
    read_text_best_effort,
    to_records,
)
from adsync.retry import PollPolicy, Sleep, poll_until
from adsync.store import Store
from adsync.util import to_stat_dt

logger = logging.getLogger(__name__)

# NONE means the report has no rows for the day; it is terminal like BUILT.
_NO_DATA_STATUS = "NONE"


class NaverSearchAdClient:
    """Signed request helper for the Naver SearchAd API (API key + HMAC-SHA256)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        secret_key: str,
        customer_id: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.secret_key = secret_key
        self.customer_id = customer_id
        self.timeout = timeout
        self._transport = transport

    def _signature(self, timestamp_ms: str, method: str, uri: str) -> str:
        msg = f"{timestamp_ms}.{method}.{uri}"
        digest = hmac.new(
            self.secret_key.encode("utf-8", errors="strict"),
            msg.encode("utf-8", errors="strict"),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("ascii", errors="strict")

    def _headers(self, method: str, uri: str) -> dict[str, str]:
        ts = str(int(time.time() * 1000))
        return {
            "Content-Type": "application/json; charset=UTF-8",
            "X-Timestamp": ts,
            "X-API-KEY": self.api_key,
            "X-Customer": str(self.customer_id),
            "X-Signature": self._signature(ts, method, uri),
        }

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=timeout or self.timeout)

    async def request_json(
        self,
        *,
        method: str,
        uri: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> Any:
        url = f"{self.base_url}{uri}"
        headers = self._headers(method, uri)
        async with self._client() as client:
            r = await client.request(method, url, params=params, json=json_body, headers=headers)
        if not r.is_success:
            raise VendorAPIError(f"Naver {method} {uri}", r.status_code, r.text)
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            return r.text

    async def download(self, download_url: str) -> bytes:
        uri = urlparse(download_url).path or "/report-download"
        headers = self._headers("GET", uri)
        headers["Accept"] = "text/csv;charset=UTF-8"
        async with self._client(timeout=120.0) as client:
            r = await client.get(download_url, headers=headers)
        if not r.is_success:
            raise VendorAPIError("Naver report download", r.status_code, r.text)
        return bytes(r.content)


class StatReportJobs:
    """Create a StatReport job, wait for it to build, and download the TSV."""

    def __init__(self, client: NaverSearchAdClient, policy: PollPolicy, *, sleep: Sleep = asyncio.sleep):
        self.client = client
        self.policy = policy
        self._sleep = sleep

    async def create_report(self, report_type: str, day: str) -> str:
        body = {"reportTp": report_type, "statDt": to_stat_dt(day)}
        logger.info("creating %s report for %s", report_type, day)
        created = await self.client.request_json(method="POST", uri="/stat-reports", json_body=body)
        job_id = None
        if isinstance(created, dict):
            job_id = created.get("reportJobId") or created.get("id")
        if not job_id:
            raise ReportJobError(f"{report_type} report: no job id in response: {created}", created)
        return str(job_id)

    async def await_completion(self, job_id: str, *, report_type: str = "report") -> dict[str, Any]:
        async def check() -> Any:
            return await self.client.request_json(method="GET", uri=f"/stat-reports/{job_id}")

        return await poll_until(check, self.policy, label=f"{report_type} report {job_id}", sleep=self._sleep)

    async def download(self, url: str | None, *, report_type: str = "report") -> str:
        url = (url or "").strip()
        if not url:
            raise ReportJobError(f"{report_type} report has no downloadUrl")
        logger.info("downloading %s report", report_type)
        return read_text_best_effort(await self.client.download(url))

    async def run(self, report_type: str, day: str) -> str:
        job_id = await self.create_report(report_type, day)
        done = await self.await_completion(job_id, report_type=report_type)
        if str(done.get("status") or "").upper() == _NO_DATA_STATUS:
            logger.info("%s report %s has no data for %s", report_type, job_id, day)
            return ""
        return await self.download(done.get("downloadUrl"), report_type=report_type)


class NaverSearchAdConnector:
    """
    Naver SearchAd daily job.

    Pulls the AD and AD_CONVERSION StatReports for one day, rolls campaigns up
    into the powerlink and brand-search cohorts, and upserts one row per cohort.
    """

    base_table = "naver_insights"
    conflict_keys = ["date", "campaign"]
    date_column = "date"

    def __init__(self, ctx: ConnectorContext, store: Store):
        self.ctx = ctx
        self.store = store
        self.table = ctx.profile.table(self.base_table)
        self.creds = ctx.profile.naver
        self.report_settings = ctx.settings.naver_report

    def _build_client(self) -> NaverSearchAdClient:
        return NaverSearchAdClient(
            base_url=self.creds.base_url,
            api_key=self.creds.api_key,
            secret_key=self.creds.secret_key,
            customer_id=self.creds.customer_id,
            timeout=self.ctx.settings.http_timeout_sec,
            transport=self.ctx.transport,
        )

    def _jobs(self, client: NaverSearchAdClient) -> StatReportJobs:
        policy = PollPolicy(
            max_attempts=self.report_settings.max_attempts,
            interval_sec=self.report_settings.poll_interval_sec,
            succeeded=frozenset({"COMPLETE", "BUILT", _NO_DATA_STATUS}),
            failed=frozenset({"FAILED", "ERROR"}),
        )
        return StatReportJobs(client, policy, sleep=self.ctx.sleep)

    async def health_check(self) -> tuple[bool, str | None]:
        missing = self.creds.missing()
        if missing:
            return False, f"Missing {', '.join(missing)}"
        return True, None

    async def fetch_campaign_types(self, client: NaverSearchAdClient) -> dict[str, str]:
        """campaign id -> ad type. Lookup failures degrade to an empty map."""
        out: dict[str, str] = {}
        try:
            camps = await client.request_json(method="GET", uri="/ncc/campaigns")
        except (httpx.HTTPError, VendorAPIError) as e:
            logger.warning("campaign type lookup failed: %s", e)
            return out
        if isinstance(camps, list):
            for c in camps:
                if not isinstance(c, dict):
                    continue
                cid = str(c.get("nccCampaignId") or "").strip()
                if cid:
                    out[cid] = ad_type_for(c.get("campaignTp"))
        logger.info("campaign types mapped: %d", len(out))
        return out

    async def _report_records(self, jobs: StatReportJobs, schema: ReportSchema, day: str) -> list:
        text = await jobs.run(schema.report_type, day)
        return to_records(parse_delimited(text), schema)

    async def fetch_daily(self, day: str) -> int:
        client = self._build_client()
        jobs = self._jobs(client)

        type_lookup = await self.fetch_campaign_types(client)
        await self.ctx.sleep(self.report_settings.api_delay_sec)

        ad_rows = await self._report_records(jobs, AD_REPORT_SCHEMA, day)
        await self.ctx.sleep(self.report_settings.api_delay_sec)
        conversion_rows = await self._report_records(jobs, CONVERSION_REPORT_SCHEMA, day)

        result = aggregate(
            ad_rows,
            conversion_rows,
            type_lookup,
            vat_rate=self.report_settings.vat_rate,
            brand_daily_spend=self.report_settings.brand_search_daily_spend,
        )
        rows = build_output_rows(result, day)
        if not rows:
            logger.info("%s: nothing to write for %s", self.ctx.label, day)
            return 0
        written = self.store.upsert(self.table, rows, self.conflict_keys)
        logger.info("%s: %d row(s) written to %s for %s", self.ctx.label, written, self.table, day)
        return written
