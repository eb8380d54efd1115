"""
Bounded retry helpers.

`with_retry` wraps a single HTTP call with exponential backoff on rate-limit
responses. `poll_until` drives job-style workflows (create, then check until a
terminal status) under an explicit `PollPolicy`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from adsync.errors import ReportJobError, ReportTimeoutError, VendorAPIError

logger = logging.getLogger(__name__)

# Graph API throttling codes: app, user, ad-account and custom-rate limits.
RATE_LIMIT_CODES = frozenset({4, 17, 32, 613})

Sleep = Callable[[float], Awaitable[None]]


def error_code(payload: Any) -> Any:
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            return err.get("code")
    return None


def is_rate_limit_error(status_code: int, payload: Any) -> bool:
    if error_code(payload) in RATE_LIMIT_CODES:
        return True
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("is_transient") is True:
            return True
    return False


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            return str(err.get("error_user_msg") or err.get("message") or fallback)
    return fallback


def backoff_delay(attempt: int, base_delay_sec: float) -> float:
    return base_delay_sec * (2 ** (max(attempt, 1) - 1))


async def with_retry(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    max_attempts: int = 3,
    *,
    label: str = "API",
    is_retryable: Callable[[int, Any], bool] = is_rate_limit_error,
    base_delay_sec: float = 30.0,
    network_delay_sec: float = 30.0,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """
    Call `request_fn` until it returns a 2xx response and return the decoded JSON.

    - Retryable error responses wait `base_delay_sec * 2^(attempt-1)`.
    - Non-retryable responses, or retryable ones on the last attempt, raise
      `VendorAPIError` with the status and body text.
    - Transport failures wait `network_delay_sec`; on the last attempt the
      underlying `httpx` error is re-raised.
    """
    max_attempts = max(1, int(max_attempts))
    for attempt in range(1, max_attempts + 1):
        try:
            resp = await request_fn()
        except httpx.TransportError as e:
            if attempt >= max_attempts:
                raise
            logger.warning(
                "%s network error (attempt %d/%d): %s; retrying in %.0fs",
                label,
                attempt,
                max_attempts,
                e,
                network_delay_sec,
            )
            await sleep(network_delay_sec)
            continue

        if resp.is_success:
            try:
                payload = resp.json()
            except json.JSONDecodeError as e:
                raise VendorAPIError(label, resp.status_code, resp.text) from e
            if attempt > 1:
                logger.info("%s succeeded on attempt %d/%d", label, attempt, max_attempts)
            return payload

        body = resp.text or ""
        try:
            err_payload: Any = json.loads(body)
        except json.JSONDecodeError:
            err_payload = {"error": {"message": body}}

        if is_retryable(resp.status_code, err_payload) and attempt < max_attempts:
            wait = backoff_delay(attempt, base_delay_sec)
            logger.warning(
                "%s rate limited (attempt %d/%d): %s; retrying in %.0fs",
                label,
                attempt,
                max_attempts,
                _error_message(err_payload, body[:200]),
                wait,
            )
            await sleep(wait)
            continue

        logger.error("%s error %s: %s", label, resp.status_code, body[:500])
        raise VendorAPIError(label, resp.status_code, body, code=error_code(err_payload))

    raise VendorAPIError(label, 0, "request failed")


def _default_status(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("status") or "").upper()
    return ""


@dataclass(frozen=True)
class PollPolicy:
    max_attempts: int = 30
    interval_sec: float = 10.0
    succeeded: frozenset[str] = frozenset({"COMPLETE", "BUILT"})
    failed: frozenset[str] = frozenset({"FAILED", "ERROR"})

    def is_terminal(self, status: str) -> bool:
        return status in self.succeeded or status in self.failed


async def poll_until(
    check: Callable[[], Awaitable[Any]],
    policy: PollPolicy,
    *,
    label: str = "job",
    status_of: Callable[[Any], str] = _default_status,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """
    Wait `policy.interval_sec`, then call `check`, up to `policy.max_attempts` times.

    Returns the payload of the first succeeded status and raises `ReportJobError`
    on a failed status. Errors raised by a single `check` are logged and use up
    that attempt, the same as a still-pending status. Running out of attempts
    raises `ReportTimeoutError`.
    """
    last: Any = None
    for attempt in range(1, policy.max_attempts + 1):
        await sleep(policy.interval_sec)
        try:
            payload = await check()
        except (httpx.HTTPError, VendorAPIError) as e:
            logger.warning("%s status check %d/%d failed: %s", label, attempt, policy.max_attempts, e)
            continue

        last = payload
        status = status_of(payload)
        logger.info("%s status check %d/%d: %s", label, attempt, policy.max_attempts, status or "?")
        if status in policy.succeeded:
            return payload
        if status in policy.failed:
            raise ReportJobError(f"{label} failed: {json.dumps(payload, ensure_ascii=False, default=str)}", payload)

    raise ReportTimeoutError(f"{label} not ready after {policy.max_attempts} attempts", last)
