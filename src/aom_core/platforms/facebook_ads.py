"""Facebook Ads cost importer (Meta Marketing API insights).

Schedules an asynchronous ad-level insights report for the date range,
polls it to completion and pages through the result rows.
"""
import asyncio
import json
import logging
import random
from datetime import date
from time import monotonic
from typing import Any, Optional

import aiohttp

from ..exceptions import (
    CostImportError,
    ImportAuthError,
    ImportNetworkError,
    ImportParseError,
)
from ..schemas.records import CostRecord, Platform
from .base import CostImporter


INSIGHT_FIELDS = [
    "campaign_id",
    "campaign_name",
    "adset_id",
    "adset_name",
    "ad_id",
    "ad_name",
    "spend",
    "impressions",
    "clicks",
    "actions",
    "action_values",
]

PURCHASE_ACTION_TYPES = {"purchase", "offsite_conversion.fb_pixel_purchase"}


def _safe_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _safe_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _sum_actions(actions: Optional[list], as_float: bool) -> float | int:
    total: float | int = 0.0 if as_float else 0
    for action in actions or []:
        if action.get("action_type") in PURCHASE_ACTION_TYPES:
            value = action.get("value")
            total += _safe_float(value) if as_float else _safe_int(value)
    return total


class FacebookAdsImporter(CostImporter):
    """Async importer for Facebook Ads daily ad-level costs."""

    platform = Platform.FACEBOOK_ADS

    DEFAULT_POLL_INTERVAL = 5.0  # seconds
    DEFAULT_POLL_TIMEOUT = 1800  # 30 minutes

    MAX_RETRY_ATTEMPTS = 5
    RETRY_BASE_DELAY = 0.5  # seconds
    RETRY_MULTIPLIER = 2.0
    RETRY_MAX_DELAY = 30.0  # seconds
    RETRY_JITTER_MS = 250  # milliseconds

    def __init__(
        self,
        access_token: str,
        account_id: str,
        site_id: int,
        session: aiohttp.ClientSession,
        api_version: str = "v18.0",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize Facebook Ads importer.

        Args:
            access_token: Marketing API access token (never logged)
            account_id: Ad account ID (with or without 'act_' prefix)
            site_id: Website the account's spend belongs to
            session: Injected aiohttp ClientSession
            api_version: Graph API version, e.g. "v18.0"
            poll_interval: Seconds between report status polls
            poll_timeout: Maximum seconds to wait for a report
            logger: Optional logger instance
        """
        self._access_token = access_token

        if not account_id.startswith("act_"):
            account_id = f"act_{account_id}"
        self.account_id = account_id

        self._site_id = site_id
        self.session = session
        self.api_version = api_version
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.logger = logger or logging.getLogger(__name__)

        self.base_url = f"https://graph.facebook.com/{api_version}"

    @property
    def site_id(self) -> Optional[int]:
        return self._site_id

    def _redact(self, text: str) -> str:
        if not text:
            return text
        return text.replace(self._access_token, "[REDACTED]")

    async def fetch_costs(self, start_date: date, end_date: date) -> list[CostRecord]:
        """Fetch daily ad-level costs for the range.

        Raises:
            ImportAuthError: Credentials rejected
            ImportNetworkError: Network failure, 5xx or report timeout
            ImportParseError: Malformed response rows
            CostImportError: Report failed on the platform side
        """
        if start_date > end_date:
            start_date, end_date = end_date, start_date

        report_run_id = await self._schedule_report(start_date, end_date)
        await self._wait_for_report(report_run_id)
        rows = await self._download_report(report_run_id)

        records = [self._row_to_record(row) for row in rows]

        self.logger.info(
            "Fetched %s FacebookAds cost records for %s..%s",
            len(records),
            start_date.isoformat(),
            end_date.isoformat(),
        )
        return records

    async def _schedule_report(self, start_date: date, end_date: date) -> str:
        params = {
            "level": "ad",
            "time_increment": "1",
            "time_range": json.dumps(
                {"since": start_date.isoformat(), "until": end_date.isoformat()}
            ),
            "fields": ",".join(INSIGHT_FIELDS),
        }
        result = await self._request_json(
            "POST", f"{self.base_url}/{self.account_id}/insights", params
        )

        report_run_id = result.get("report_run_id")
        if not report_run_id:
            raise ImportParseError(
                self.platform.value, f"report_run_id missing in response: {str(result)[:200]}"
            )

        self.logger.info("Scheduled FacebookAds insights report: %s", report_run_id)
        return str(report_run_id)

    async def _wait_for_report(self, report_run_id: str) -> None:
        start_time = monotonic()

        while True:
            elapsed = monotonic() - start_time
            if elapsed > self.poll_timeout:
                raise ImportNetworkError(
                    self.platform.value,
                    f"report {report_run_id} not completed after {elapsed:.1f}s",
                )

            result = await self._request_json(
                "GET", f"{self.base_url}/{report_run_id}", {}
            )
            status = result.get("async_status")

            self.logger.debug(
                "Poll: report=%s status=%s completion=%s%%",
                report_run_id,
                status,
                result.get("async_percent_completion"),
            )

            if status == "Job Completed":
                return

            if status in {"Job Failed", "Job Skipped"}:
                raise CostImportError(
                    self.platform.value, f"report {report_run_id} ended with '{status}'"
                )

            await asyncio.sleep(self.poll_interval)

    async def _download_report(self, report_run_id: str) -> list[dict]:
        all_rows: list[dict] = []

        result = await self._request_json(
            "GET", f"{self.base_url}/{report_run_id}/insights", {"limit": "500"}
        )
        all_rows.extend(self._page_rows(result))

        while (result.get("paging") or {}).get("next"):
            result = await self._request_json("GET", result["paging"]["next"], None)
            all_rows.extend(self._page_rows(result))

        return all_rows

    def _page_rows(self, result: dict) -> list[dict]:
        data = result.get("data")
        if not isinstance(data, list):
            raise ImportParseError(
                self.platform.value, f"insights page without data list: {str(result)[:200]}"
            )
        return data

    def _row_to_record(self, row: dict) -> CostRecord:
        ad_id = row.get("ad_id")
        date_start = row.get("date_start")
        if not ad_id or not date_start:
            raise ImportParseError(
                self.platform.value, f"row without ad_id/date_start: {str(row)[:200]}"
            )

        try:
            metric_date = date.fromisoformat(date_start)
        except ValueError as exc:
            raise ImportParseError(
                self.platform.value, f"invalid date_start '{date_start}'"
            ) from exc

        return CostRecord(
            platform=self.platform,
            external_row_id=f"{metric_date.isoformat()}-{ad_id}",
            site_id=self._site_id,
            metric_date=metric_date,
            account_id=self.account_id,
            campaign_id=row.get("campaign_id"),
            campaign=row.get("campaign_name"),
            clicks=_safe_int(row.get("clicks")),
            cost=_safe_float(row.get("spend")),
            conversions=_sum_actions(row.get("actions"), as_float=False),
            conversion_value=_sum_actions(row.get("action_values"), as_float=True),
            platform_data={
                "adsetId": row.get("adset_id"),
                "adsetName": row.get("adset_name"),
                "adId": ad_id,
                "adName": row.get("ad_name"),
                "impressions": _safe_int(row.get("impressions")),
            },
        )

    async def _request_json(
        self, method: str, url: str, params: Optional[dict]
    ) -> dict:
        """Execute a Graph API request with retry logic.

        Args:
            method: HTTP method
            url: Absolute URL (paging URLs already carry the token)
            params: Query parameters, None for pre-built paging URLs

        Returns:
            Parsed JSON response

        Raises:
            ImportAuthError: HTTP 401/403 or OAuthException
            ImportNetworkError: On network errors or max retries exceeded
            ImportParseError: On non-JSON responses
        """
        if params is not None:
            params = {**params, "access_token": self._access_token}

        attempt = 0
        while True:
            attempt += 1

            try:
                timeout = aiohttp.ClientTimeout(total=120, connect=10)
                async with self.session.request(
                    method, url, params=params, timeout=timeout
                ) as resp:
                    response_text = await resp.text()

                    if resp.status == 429 or 500 <= resp.status < 600:
                        if attempt > self.MAX_RETRY_ATTEMPTS:
                            raise ImportNetworkError(
                                self.platform.value,
                                f"HTTP {resp.status} after {attempt} attempts: "
                                f"{self._redact(response_text[:200])}",
                            )

                        delay = self._calculate_backoff(attempt)
                        self.logger.warning(
                            "FacebookAds HTTP %s, backoff=%.2fs, attempt=%s",
                            resp.status,
                            delay,
                            attempt,
                        )
                        await asyncio.sleep(delay)
                        continue

                    if resp.status in (401, 403) or (
                        resp.status == 400 and "OAuthException" in response_text
                    ):
                        raise ImportAuthError(
                            self.platform.value,
                            resp.status,
                            self._redact(response_text),
                        )

                    if 400 <= resp.status < 500:
                        raise CostImportError(
                            self.platform.value,
                            f"HTTP {resp.status} (non-retryable): "
                            f"{self._redact(response_text[:500])}",
                        )

                    try:
                        return json.loads(response_text)
                    except json.JSONDecodeError as exc:
                        raise ImportParseError(
                            self.platform.value,
                            f"invalid JSON body: {self._redact(response_text[:200])}",
                        ) from exc

            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if attempt > self.MAX_RETRY_ATTEMPTS:
                    raise ImportNetworkError(
                        self.platform.value,
                        f"network error after {attempt} attempts: {self._redact(str(exc))}",
                    ) from exc

                delay = self._calculate_backoff(attempt)
                self.logger.warning(
                    "FacebookAds network error: %s, backoff=%.2fs, attempt=%s",
                    self._redact(str(exc)),
                    delay,
                    attempt,
                )
                await asyncio.sleep(delay)

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff with jitter.

        Args:
            attempt: Current retry attempt number (1-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.RETRY_BASE_DELAY * (self.RETRY_MULTIPLIER ** (attempt - 1)),
            self.RETRY_MAX_DELAY,
        )
        jitter = random.uniform(0, self.RETRY_JITTER_MS / 1000.0)
        return delay + jitter
